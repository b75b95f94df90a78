"""Configuration package (Facade).

Re-exports the public config types so callers import from a single path:

	from rgw_broker.services.config import RGWConfig, BrokerConfig

The RGW connection settings, the S3 data-plane settings derived from them, and
the broker's own tenant naming settings live in separate modules.
"""

from rgw_broker.services.config.broker_config import BrokerConfig
from rgw_broker.services.config.rgw_config import RGWConfig
from rgw_broker.services.config.s3_config import S3Config

__all__ = ["BrokerConfig", "RGWConfig", "S3Config"]
