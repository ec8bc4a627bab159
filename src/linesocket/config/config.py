import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'


def package_directory():
    """ the directory of the linesocket package, where the packaged configuration files live. """
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file in the given directory, or the package directory.
    """
    return os.path.join(directory or package_directory(), name + config_extension)


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def load_schema_file(file):
    """ Loads a validation schema. Schema values such as integer(min=1) must not be split into lists. """
    return ConfigObj(file, list_values=False, file_error=True, _inspec=True)


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name. A missing specialization yields an empty configuration.
    :param name:    The name of the base configuration
    :param subpart: The name of the specialization.
    :return: The ConfigObj for the configuration file.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    return load_config_file_base(file, False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def user_config_file(name):
    return os.path.expanduser('~/' + name + config_extension)


def load_config(name, directory=None):
    """
        Loads all the configuration files that relate to the given name.
        Later files override earlier ones:
        - the default specialization
        - the platform specialization
        - the user override in the home directory
        - the base configuration
        The configurations are flattened into a single configuration, and then validated
        against the "schema" specialization, which must exist.
    :param name: the base name of the configuration files
    :param directory: the location of the configuration files. Defaults to the package directory.
    :return: the validated ConfigObj
    """
    local_config = config_flavor_file(name, directory)
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(user_config_file(name), must_exist=False)
    config = ConfigObj()
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    config.configspec = load_schema_file(config_filename(config_flavor(name, 'schema'), directory))
    result = config.validate(Validator())
    if result is not True:
        for section_list, key, res in flatten_errors(config, result):
            if key is not None:
                logger.error('The "%s" key in the section "%s" failed validation: %s',
                             key, ', '.join(section_list), res)
            else:
                logger.error('The following section was missing: %s', ', '.join(section_list))
        raise ConfigObjError("the config file %s failed validation" % name)
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to resolve
    :return: The configuration section identified by the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf_path(conf: Section, name_parts, target):
    """
    Applies a configuration path to a given target object
    :param conf:        The root configuration object
    :param name_parts:  The path of the configuration to apply
    :param target:      The target object that receives the configured values
    """
    conf = fetch_conf_path(conf, name_parts)
    if conf:
        apply_conf(conf, target)


def apply_conf(conf: Section, target):
    """
    Applies the attributes contained in a configuration object to a target object.
    It does this by iterating over the items in the configuration and setting any attributes with the same name.
    """
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)
