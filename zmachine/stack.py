""" Routine call frames and the call stack (see sections 5 and 6) """

from zmachine.errors import StackException

# First global variable in the variable numbering system
GLOBAL_VAR_START = 0x10

# Calls nested deeper than this are assumed to be runaway recursion
MAX_CALL_DEPTH = 1024

MAX_LOCALS = 15

class Routine(object):
    """ Context for a routine in memory: locals, the private evaluation stack and return linkage """
    def __init__(self,return_to_address=0,store_to=None,local_variables=None,argument_count=0,
                 routine_start=0,code_starts_at=0,interrupt=None):
        self.return_to_address = return_to_address
        self.store_to = store_to # None means discard the result
        self.local_variables = list(local_variables or [])
        self.argument_count = argument_count
        self.routine_start = routine_start
        self.code_starts_at = code_starts_at
        self.interrupt = interrupt # The InputRequest a timed input routine was called for
        self.stack = []

    @classmethod
    def from_memory(cls,memory,routine_start,return_to_address,store_to,config,args=None,interrupt=None):
        """ Initialize a routine from the header at routine_start, binding args left to right (5.2) """
        args = list(args or [])
        idx = routine_start
        var_count = memory[idx]
        if var_count > MAX_LOCALS:
            raise StackException('Invalid number %d of local vars for routine at 0x%x' % (var_count,idx))
        idx+=1
        local_variables = [0] * var_count
        if config.routine_initial_values:
            # 5.2.1
            for i in range(0,var_count):
                local_variables[i] = memory.word(idx)
                idx+=2
        # Extra arguments beyond the local count are discarded
        args = args[0:var_count]
        for i,val in enumerate(args):
            local_variables[i] = val & 0xFFFF
        return cls(return_to_address=return_to_address,
                   store_to=store_to,
                   local_variables=local_variables,
                   argument_count=len(args),
                   routine_start=routine_start,
                   code_starts_at=idx,
                   interrupt=interrupt)

    def __len__(self):
        return len(self.local_variables)

    def get_local(self,key):
        local_var = key - 1
        if local_var < 0 or local_var >= len(self.local_variables):
            raise StackException('Reference to local var %d when only %d local vars' % (key,len(self.local_variables)))
        return self.local_variables[local_var]

    def set_local(self,key,val):
        local_var = key - 1
        if local_var < 0 or local_var >= len(self.local_variables):
            raise StackException('Reference to local var %d when only %d local vars' % (key,len(self.local_variables)))
        self.local_variables[local_var] = val & 0xFFFF

    def peek_stack(self):
        if not self.stack:
            raise StackException('Cannot peek at empty stack')
        return self.stack[-1]

    def push_to_stack(self,val):
        self.stack.append(val & 0xFFFF)

    def set_stack(self,val):
        # Set last element of stack to the value
        if not self.stack:
            raise StackException('Cannot replace top of empty stack')
        self.stack[-1] = val & 0xFFFF

    def pop_from_stack(self):
        try:
            return self.stack.pop()
        except IndexError:
            raise StackException('Cannot pop from empty stack')

    def copy(self):
        routine = Routine(self.return_to_address,self.store_to,self.local_variables,self.argument_count,
                          self.routine_start,self.code_starts_at,self.interrupt)
        routine.stack = list(self.stack)
        return routine

    def __eq__(self,other):
        return isinstance(other,Routine) and \
            (self.return_to_address,self.store_to,self.local_variables,self.argument_count,self.stack) == \
            (other.return_to_address,other.store_to,other.local_variables,other.argument_count,other.stack)

    def __repr__(self):
        return 'Routine(return_to=0x%x,store_to=%s,locals=%s,stack=%s)' % (self.return_to_address,self.store_to,
                                                                       self.local_variables,self.stack)

class CallStack(object):
    """ Ordered routine frames, innermost last. The outermost frame is the main pseudo-routine,
        which has no locals and is never returned from. Also owns variable numbering:
        0 is the current evaluation stack, 1-15 locals of the current routine and 16-255 globals """
    def __init__(self,memory,globals_address,frames=None):
        self.memory = memory
        self.globals_address = globals_address
        self.frames = frames if frames is not None else [Routine()]

    def __len__(self):
        return len(self.frames)

    def __iter__(self):
        return iter(self.frames)

    def __getitem__(self,idx):
        return self.frames[idx]

    def current(self):
        """ Return the currently running routine (at top of routine stack) """
        return self.frames[-1]

    def push(self,routine):
        if len(self.frames) >= MAX_CALL_DEPTH:
            raise StackException('Call stack overflow (%d frames)' % len(self.frames))
        self.frames.append(routine)

    def pop(self):
        if len(self.frames) < 2:
            raise StackException('Return with no calling routine')
        return self.frames.pop()

    def unwind_to(self,depth):
        """ Drop frames until the frame at depth (1-based, as given out by catch) is current """
        if depth < 1 or depth > len(self.frames):
            raise StackException('Throw to frame %d with %d frames' % (depth,len(self.frames)))
        del self.frames[depth:]

    def snapshot(self):
        return [f.copy() for f in self.frames]

    def replace(self,frames):
        self.frames = frames

    ### Variables (4.2)

    def _global_address(self,key):
        return self.globals_address+((key-GLOBAL_VAR_START)*2)

    def get_nth_global(self,global_id):
        """ Return the 0-based global. """
        return self.memory.word(self._global_address(GLOBAL_VAR_START+global_id))

    def set_nth_global(self,global_id,val):
        """ Set the 0-based global. """
        self.memory.set_word(self._global_address(GLOBAL_VAR_START+global_id),val)

    def get_var(self,key,indirect=False):
        """ Return the value of the numbered variable. Reading variable 0 pops the stack, unless
            this is an indirect reference (6.3.4) in which case the top is read in place """
        key = int(key)
        if key < 0 or key > 255:
            raise StackException('Var %d is out of range 0 to 255' % key)
        if key == 0:
            if indirect:
                return self.current().peek_stack()
            return self.current().pop_from_stack()
        elif key < GLOBAL_VAR_START:
            return self.current().get_local(key)
        return self.memory.word(self._global_address(key))

    def set_var(self,key,val,indirect=False):
        """ Write a word to the var with the given number. See get_var """
        key = int(key)
        if key < 0 or key > 255:
            raise StackException('Var %d is out of range 0 to 255' % key)
        if key == 0:
            if indirect:
                self.current().set_stack(val)
            else:
                self.current().push_to_stack(val)
        elif key < GLOBAL_VAR_START:
            self.current().set_local(key,val)
        else:
            self.memory.set_word(self._global_address(key),val)
