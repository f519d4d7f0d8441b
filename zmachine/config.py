""" Interpreter configuration, read from a YAML file. Only the error policy affects the machine,
    the rest is passed through to the header and the console """
import logging
import os

import yaml

from zmachine.errors import ConfigException,ErrorPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join('~','.zmachine.yaml')

class Config(object):
    DEFAULT_FOREGROUND = 9 # White
    DEFAULT_BACKGROUND = 2 # Black

    def __init__(self,foreground=DEFAULT_FOREGROUND,background=DEFAULT_BACKGROUND,logging=False,
                 error_handling=ErrorPolicy.CONTINUE_WARN_ONCE):
        self.foreground = foreground
        self.background = background
        self.logging = logging
        self.error_handling = error_handling

    @property
    def default_colours(self):
        return (self.foreground,self.background)

    @classmethod
    def from_dict(cls,data):
        if data is None:
            data = {}
        if not isinstance(data,dict):
            raise ConfigException('Configuration must be a mapping, not %s' % type(data).__name__)
        config = cls()
        try:
            config.foreground = int(data.get('foreground',config.foreground))
            config.background = int(data.get('background',config.background))
        except (TypeError,ValueError) as e:
            raise ConfigException('Invalid colour in configuration: %s' % e)
        config.logging = data.get('logging') == 'enabled'
        policy = data.get('error_handling')
        if policy is not None:
            config.error_handling = ErrorPolicy.from_name(policy,config.error_handling)
            if config.error_handling.value != policy:
                logger.warning('Unknown error_handling "%s", using %s' % (policy,config.error_handling.value))
        return config

    @classmethod
    def from_file(cls,path=DEFAULT_CONFIG_PATH):
        """ Load configuration. A missing file gives the defaults """
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            logger.info('No configuration at %s, using defaults' % path)
            return cls()
        try:
            with open(path,'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigException('Unable to parse %s: %s' % (path,e))
        except OSError as e:
            raise ConfigException('Unable to read %s: %s' % (path,e))
        return cls.from_dict(data)
