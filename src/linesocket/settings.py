import logging

from linesocket.config.config import load_config, apply_conf_path
from linesocket.support.mixins import StringerMixin

logger = logging.getLogger(__name__)


class EndpointSettings(StringerMixin):
    """
    Socket and text encoding options shared by the client and server endpoints.

    The class attributes are the fallback values; load() applies the [endpoint] section of the
    layered linesocket configuration on top of them.
    """
    encoding = 'utf-8'
    encoding_errors = 'replace'
    bind_host = ''
    backlog = 50
    reuse_address = True

    def __init__(self, **overrides):
        for k, v in overrides.items():
            if not hasattr(self, k):
                raise TypeError("unknown endpoint setting '%s'" % k)
            setattr(self, k, v)

    @classmethod
    def load(cls, config_name='linesocket', directory=None, section='endpoint', **overrides):
        """
        Loads settings from configuration files.
        :param config_name: the base name of the configuration files
        :param directory: where the configuration files are. Defaults to the package directory.
        :param section: dotted path of the section holding the settings
        :param overrides: values that take precedence over the configuration
        """
        settings = cls()
        apply_conf_path(load_config(config_name, directory), section.split('.'), settings)
        for k, v in cls(**overrides).__dict__.items():
            setattr(settings, k, v)
        logger.debug("loaded %s", settings)
        return settings
