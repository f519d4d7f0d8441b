""" Fault taxonomy for the interpreter, and the classifier that applies the configured
    recovery policy to recoverable faults.

    Every fault raised by memory, objects, text, the call stack, the instruction decoder,
    save/restore and the resource parser is a ZMachineException carrying a kind and the
    program counter of the instruction that raised it.
"""
import logging
from enum import Enum

logger = logging.getLogger(__name__)

class ErrorKind(Enum):
    MEMORY_ACCESS = 'MemoryAccess'
    OBJECT        = 'Object'
    STACK         = 'Stack'
    ARITHMETIC    = 'Arithmetic'
    OPCODE        = 'Opcode'
    SAVE_RESTORE  = 'SaveRestore'
    RESOURCE      = 'Resource'
    STORY_FILE    = 'StoryFile'
    CONFIG        = 'Config'

class ErrorPolicy(Enum):
    IGNORE               = 'ignore'
    CONTINUE_WARN_ONCE   = 'continue_warn_once'
    CONTINUE_WARN_ALWAYS = 'continue_warn_always'
    ABORT                = 'abort'

    @classmethod
    def from_name(cls,name,default=None):
        """ Map a config string to a policy, returning default for unknown names """
        for policy in cls:
            if policy.value == name:
                return policy
        return default

class ZMachineException(Exception):
    """ Base for all faults raised by the machine """
    kind = None
    default_recoverable = True

    def __init__(self,message,pc=None,recoverable=None):
        super(ZMachineException,self).__init__(message)
        self.message = message
        self.pc = pc
        if recoverable is None:
            recoverable = self.default_recoverable
        self.recoverable = recoverable

    def __str__(self):
        prefix = 'Recoverable' if self.recoverable else 'Fatal'
        if self.pc is None:
            return '%s %s error: %s' % (prefix,self.kind.value,self.message)
        return '%s %s error at 0x%05x: %s' % (prefix,self.kind.value,self.pc,self.message)

class MemoryAccessException(ZMachineException):
    """ Thrown in cases where a game attempts to access memory it shouldn't """
    kind = ErrorKind.MEMORY_ACCESS

class ObjectException(ZMachineException):
    """ Invalid object id, attribute or property """
    kind = ErrorKind.OBJECT

class StackException(ZMachineException):
    """ Pop from an empty evaluation stack, return with no caller, bad local """
    kind = ErrorKind.STACK

class ZArithmeticException(ZMachineException):
    """ Division/modulo by zero, invalid shifts """
    kind = ErrorKind.ARITHMETIC

class InstructionException(ZMachineException):
    """ Unknown opcode or wrong operand count. Unknown opcodes are always fatal. """
    kind = ErrorKind.OPCODE

class SaveRestoreException(ZMachineException):
    """ Invalid, truncated or mismatched save state """
    kind = ErrorKind.SAVE_RESTORE

class ResourceException(ZMachineException):
    """ Invalid resource (blorb) container """
    kind = ErrorKind.RESOURCE

class StoryFileException(ZMachineException):
    """ Thrown in cases where a story file is invalid """
    kind = ErrorKind.STORY_FILE
    default_recoverable = False

class ConfigException(ZMachineException):
    """ Unreadable configuration file """
    kind = ErrorKind.CONFIG
    default_recoverable = False

class Recovery(Enum):
    """ What the engine should do with a fault once classified """
    CONTINUE = 1 # skip the store/branch of the faulting instruction, go to next
    HALT     = 2

class ErrorClassifier(object):
    """ Applies an ErrorPolicy to faults. Reports go to the log, and to the optional
        report_f callback (taking the fault and the description of the faulting
        instruction). """
    def __init__(self,policy=ErrorPolicy.CONTINUE_WARN_ONCE,report_f=None):
        self.policy = policy
        self.report_f = report_f
        self.reset()

    def reset(self):
        self._reported = set()
        self.fault_count = 0

    def classify(self,fault,opcode_name='',description=''):
        """ Return a Recovery for the given fault """
        self.fault_count += 1
        if not fault.recoverable or self.policy == ErrorPolicy.ABORT:
            logger.error('%s [%s]' % (fault,description))
            return Recovery.HALT

        if self.policy == ErrorPolicy.CONTINUE_WARN_ALWAYS:
            self._report(fault,description)
        elif self.policy == ErrorPolicy.CONTINUE_WARN_ONCE:
            key = (fault.kind,opcode_name)
            if key not in self._reported:
                self._reported.add(key)
                self._report(fault,description)
        return Recovery.CONTINUE

    def _report(self,fault,description):
        logger.warning('%s [%s]' % (fault,description))
        if self.report_f:
            self.report_f(fault,description)
