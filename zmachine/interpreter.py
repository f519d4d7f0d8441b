""" See http://inform-fiction.org/zmachine/standards/z1point1/index.html for a definition of the Z-Machine
"""
import logging

from zmachine.errors import ZMachineException,StoryFileException,SaveRestoreException,\
                            ErrorClassifier,ErrorPolicy,Recovery
from zmachine.memory import Memory,GameMemory
from zmachine.header import Header
from zmachine.text import ZText,ZSCII_NEWLINE
from zmachine.dictionary import Dictionary
from zmachine.objects import ObjectTableManager
from zmachine.rng import RNG
from zmachine.stack import CallStack,Routine
from zmachine.io import Screen,Sound
from zmachine.instructions import read_instruction,extract_branch_offset,convert_to_signed
from zmachine.blorb import Blorb,is_blorb
from zmachine import quetzal

logger = logging.getLogger(__name__)

# 6.1.2 - games may keep this many undo states, older ones are dropped
MAX_UNDO_STATES = 10

class Story(object):
    """ Full copy of the (a) original story file data and (b) current (possibly modifed) memory.
        Provides wrapper interfaces to subsets of the memory, such as the dictionary, header,
        or objects """
    MIN_FILE_SIZE = 64  # Minimum size of a story file, in bytes

    def __init__(self,data):
        """ Initalize with story data, or a blorb containing it. Data is not validated until reset() is called """
        self.blorb = None
        if is_blorb(data):
            self.blorb = Blorb(data)
            data = self.blorb.story_data()

        self.header = None
        self.dictionary = None
        self.object_table = None
        self.version_config = None
        self.ztext = None

        # Initial data, stored to allow for resets
        self.story_data = bytes(data)

        # Raw bytes of memory as a Memory object
        self.raw_data = None

        # Will contain the wrapped game memory that provides memory access validation
        self.game_memory = None

    def reset(self):
        """ Reset/initialize the game state from the raw game data. Will raise StoryFileException on validation issues. """
        if len(self.story_data) < Story.MIN_FILE_SIZE:
            raise StoryFileException('Story file is too short')
        self.raw_data = Memory(self.story_data)
        self.header = Header(self.raw_data)
        self.version_config = self.header.version_config()
        static_start = self.header.static_memory_address
        if static_start < Header.HEADER_SIZE or static_start > len(self.story_data):
            raise StoryFileException('Static memory starts at invalid address 0x%x' % static_start)
        self.game_memory = GameMemory(self.raw_data,static_start,self.header.himem_address)
        self.original_dynamic = self.game_memory.dynamic_bytes()
        self.ztext = ZText(self.header.version,
                           memory=self.raw_data,
                           abbrev_address=self.header.abbrev_address,
                           alphabet_address=self.header.alphabet_table_address,
                           unicode_address=self.header.unicode_table_address)
        self.dictionary = Dictionary(self.raw_data,self.header.dictionary_address,self.ztext)
        self.object_table = ObjectTableManager(self.game_memory,self.header.object_table_address,self.version_config)

    def calculate_checksum(self):
        """ Return the calculated checksum, which is the unsigned sum, mod 65536
            of all bytes past 0x0040 up to the file length in the header. Uses the original data,
            since memory changes post-load """
        length = self.header.file_length() or len(self.story_data)
        return sum(self.story_data[0x40:length]) % 65536

class InputRequest(object):
    """ A read suspended waiting on input. Handed to the caller, who completes it with
        Interpreter.complete_input """
    LINE = 'line'
    CHAR = 'char'

    _next_token = 1

    def __init__(self,kind,instruction,text_buffer=0,parse_buffer=0,time=0,routine=0,
                 max_length=0,initial_text='',terminators=(ZSCII_NEWLINE,)):
        self.kind = kind
        self.instruction = instruction
        self.text_buffer = text_buffer
        self.parse_buffer = parse_buffer
        self.time = time # In tenths of a second, 0 for none
        self.routine = routine
        self.max_length = max_length
        self.initial_text = initial_text
        self.terminators = terminators
        self.token = InputRequest._next_token
        InputRequest._next_token += 1

    def __repr__(self):
        return 'InputRequest(%s,token=%d,time=%d)' % (self.kind,self.token,self.time)

class SaveHandler(object):
    """ Stores save data somewhere. Return True on success """
    def save(self,data):
        return False

class RestoreHandler(object):
    """ Return the bytes of a previous save, or None """
    def restore(self):
        return None

class Interpreter(object):
    """ Main interface to the game. Combines Story, call stack, OutputStreams, InputStreams, SaveHandler,
        RestoreHandler. Call reset to start the interpreter.
    """
    RUNNING_STATE = 0
    WAITING_FOR_LINE_STATE = 1
    WAITING_FOR_CHAR_STATE = 2
    HALTED_STATE = 3

    def __init__(self,story,output_streams,input_streams,save_handler=None,restore_handler=None,screen=None,
                 sound=None,rng=None,config=None,report_f=None):
        self.story = story
        self.output_streams = output_streams
        self.input_streams = input_streams
        self.save_handler = save_handler or SaveHandler()
        self.restore_handler = restore_handler or RestoreHandler()
        self.screen = screen or output_streams.screen or Screen()
        self.sound = sound or Sound()
        self.rng = rng or RNG()
        self.config = config
        policy = config.error_handling if config else ErrorPolicy.CONTINUE_WARN_ONCE
        self.error_classifier = ErrorClassifier(policy,report_f=report_f)
        self.initialized = False
        self.pc = 0 # program counter
        self.state = Interpreter.RUNNING_STATE
        self.pending_input = None
        self.last_instruction = None
        self.fault = None

    ### Collaborators, which are rebuilt by a restart

    @property
    def memory(self):
        return self.story.game_memory

    @property
    def header(self):
        return self.story.header

    @property
    def version_config(self):
        return self.story.version_config

    @property
    def ztext(self):
        return self.story.ztext

    @property
    def dictionary(self):
        return self.story.dictionary

    @property
    def object_table(self):
        return self.story.object_table

    def reset(self):
        """ Start/restart the interpreter """
        self.initialized = True
        self.story.reset()
        logger.info('Loaded version %d story, release %d' % (self.header.version,self.header.release_number))
        self.undo_states = []
        self.sound_routines = []
        self.error_classifier.reset()
        self.rng.enter_random_mode()
        self.screen.reset()
        self._start()

    def _start(self):
        self._reset_header()
        if self.output_streams:
            self.output_streams.reset(self.memory,self.header,self.ztext)
        if self.input_streams:
            self.input_streams.reset()
        self.call_stack = CallStack(self.memory,self.header.global_variables_address)
        self.pc = self.header.main_routine_addr
        self.state = Interpreter.RUNNING_STATE
        self.pending_input = None
        self.last_instruction = None
        self.fault = None

    def _reset_header(self):
        default_colours = self.config.default_colours if self.config else (9,2)
        self.header.reset(screen_lines=self.screen.lines,
                          screen_columns=self.screen.columns,
                          default_colours=default_colours,
                          split_available=self.screen.supports_screen_splitting(),
                          sound_available=self.sound.is_available(),
                          colours_available=self.screen.supports_colours())

    def _check_initialized(self):
        if not self.initialized:
            raise RuntimeError('Interpreter is not yet initialized')

    ### Routines

    def call_routine(self,routine_address,next_address,store_to,args=None,interrupt=None):
        """ Add a routine call to the stack from the current program counter """
        new_routine = Routine.from_memory(self.memory,routine_address,next_address,store_to,
                                          self.version_config,args,interrupt=interrupt)
        self.call_stack.push(new_routine)
        self.pc = new_routine.code_starts_at

    def return_from_current_routine(self,return_val):
        """ Pop the call stack and set the return_to variable to return_val """
        return_from_routine = self.call_stack.pop()
        if isinstance(return_from_routine.interrupt,InputRequest):
            self._read_interrupt_returned(return_from_routine.interrupt,return_val)
            return
        if return_from_routine.store_to is not None:
            self.call_stack.set_var(return_from_routine.store_to,return_val)
        self.pc = return_from_routine.return_to_address

    def current_routine(self):
        """ Return the currently running routine (at top of routine stack) """
        return self.call_stack.current()

    ### Execution

    def instruction_at(self,address):
        """ Return the instruction at the given address """
        return read_instruction(self.story.raw_data,address,self.header.version,self.ztext)

    def current_instruction(self):
        """ Return the current instruction """
        return self.instruction_at(self.pc)

    def instructions(self,how_many):
        """ Return how_many instructions starting at the current instruction """
        instructions = []
        address = self.pc
        for i in range(0,how_many):
            instruction = self.instruction_at(address)
            instructions.append(instruction)
            address = instruction.next_address
        return instructions

    @property
    def awaiting_input(self):
        return self.state in (Interpreter.WAITING_FOR_LINE_STATE,Interpreter.WAITING_FOR_CHAR_STATE)

    def step(self):
        """ If in running state, execute the current instruction then increment the program counter.
        If waiting for text, query the input streams for the next line """
        self._check_initialized()
        if self.state == Interpreter.WAITING_FOR_LINE_STATE:
            line = self.input_streams.readline()
            if line is not None:
                self.complete_input(self.pending_input,line)
        elif self.state == Interpreter.WAITING_FOR_CHAR_STATE:
            char = self.input_streams.read_char()
            if char is not None:
                self.complete_input(self.pending_input,char)

        if self.state == Interpreter.RUNNING_STATE:
            self._poll_sounds()
            self._execute()

        return self.state

    def run(self,max_steps=None):
        """ Step until the machine halts or waits on input """
        steps = 0
        while self.state == Interpreter.RUNNING_STATE:
            self.step()
            steps += 1
            if max_steps is not None and steps >= max_steps:
                break
        return self.state

    def _execute(self):
        instruction = None
        try:
            instruction = self.current_instruction()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug('%05x %s' % (self.pc,instruction))
            self.last_instruction = instruction
            operands = instruction.operand_values(self)
            action = instruction.handler['handler'](self,instruction,operands)
            action.apply(self)
        except ZMachineException as e:
            self._handle_fault(e,instruction)

    def _handle_fault(self,fault,instruction):
        if fault.pc is None:
            fault.pc = instruction.address if instruction else self.pc
        name = instruction.name if instruction else ''
        description = str(instruction) if instruction else ''
        recovery = self.error_classifier.classify(fault,name,description)
        if recovery == Recovery.HALT or instruction is None:
            self.fault = fault
            self.halt()
        else:
            # Skip the store/branch of the faulting instruction
            self.pc = instruction.next_address

    def halt(self):
        self.state = Interpreter.HALTED_STATE
        if self.output_streams:
            self.output_streams.flush()

    def quit(self):
        logger.info('Game quit')
        self.halt()

    def restart(self):
        """ Reload the story, keeping the transcript and fixed pitch bits of Flags 2 (6.1.3) """
        logger.info('Restarting')
        preserved = self.header.flags_2 & Header.PRESERVED_FLAGS_2
        self.story.reset()
        self.header.flags_2 = (self.header.flags_2 & ~Header.PRESERVED_FLAGS_2) | preserved
        self.screen.reset()
        self._start()

    def verify(self):
        return self.story.calculate_checksum() == self.header.checksum

    ### Text

    def object_name(self,obj_id):
        address,length = self.object_table.short_name(obj_id)
        if not length:
            return ''
        return self.ztext.decode(self.memory,address,length)

    def show_status(self):
        """ Update the status line with our current status (8.2) """
        room_id = self.call_stack.get_nth_global(0)
        if self.object_table.is_valid_object_id(room_id):
            room_name = self.object_name(room_id)
        else:
            room_name = ''
        first = self.call_stack.get_nth_global(1)
        second = self.call_stack.get_nth_global(2)
        if self.header.flag_status_line_type == 0:
            # 8.2.3.1
            self.screen.show_status(room_name,score_mode=True,score=convert_to_signed(first),turns=second)
        else:
            # 8.2.3.2
            self.screen.show_status(room_name,score_mode=False,hours=first,minutes=second)

    def read_text_buffer(self,text_buffer):
        """ Return the ZSCII chars in a text buffer, and the offset of the first char """
        if self.header.version < 5:
            chars = []
            idx = text_buffer+1
            while self.memory[idx] != 0 and len(chars) < self.memory[text_buffer]:
                chars.append(self.memory[idx])
                idx+=1
            return chars,1
        count = self.memory[text_buffer+1]
        return [self.memory[text_buffer+2+i] for i in range(0,count)],2

    ### Input

    def _terminators(self):
        """ 10.5.2.1 - Newline always terminates, plus the game's terminating characters in version 5+ """
        terminators = [ZSCII_NEWLINE]
        address = self.header.terminating_chars_address if self.header.version >= 5 else 0
        if address:
            while self.memory[address] != 0:
                terminators.append(self.memory[address])
                address+=1
        return tuple(terminators)

    def begin_read_line(self,instruction,text_buffer,parse_buffer,time=0,routine=0):
        if self.header.version < 4:
            self.show_status()
        initial_text = ''
        if self.header.version < 5:
            max_length = self.memory[text_buffer]-1
        else:
            max_length = self.memory[text_buffer]
            # Text the game left in the buffer is treated as already typed
            chars,offset = self.read_text_buffer(text_buffer)
            initial_text = ''.join([self.ztext.zscii_to_unicode(c) for c in chars])
        return InputRequest(InputRequest.LINE,instruction,text_buffer=text_buffer,parse_buffer=parse_buffer,
                            time=time,routine=routine,max_length=max_length,initial_text=initial_text,
                            terminators=self._terminators())

    def begin_read_char(self,instruction,time=0,routine=0):
        return InputRequest(InputRequest.CHAR,instruction,time=time,routine=routine)

    def suspend(self,request):
        """ Wait on input for the request. The pc stays on the reading instruction """
        self.pending_input = request
        self.pc = request.instruction.address
        if request.kind == InputRequest.LINE:
            self.state = Interpreter.WAITING_FOR_LINE_STATE
        else:
            self.state = Interpreter.WAITING_FOR_CHAR_STATE
        if self.output_streams:
            self.output_streams.flush()

    def complete_input(self,request,text=None,terminator=ZSCII_NEWLINE,timed_out=False):
        """ Finish the read waiting on request. For a line read, text is the typed line, for a char read
            the key pressed. If timed_out, text is whatever was typed so far and the read's interrupt
            routine (if any) decides whether the read ends. """
        if request is None or self.pending_input is None or request.token != self.pending_input.token:
            raise ValueError('%r is not the pending input request' % (request,))
        if text is None:
            text = ''
        try:
            if timed_out:
                request.partial_text = text
                if request.routine:
                    self.state = Interpreter.RUNNING_STATE
                    self.call_routine(self.version_config.unpack_routine(request.routine),
                                      request.instruction.address,None,interrupt=request)
                return
            if request.kind == InputRequest.LINE:
                self._finish_read_line(request,text,terminator)
            else:
                self._finish_read_char(request,text)
        except ZMachineException as e:
            self.pending_input = None
            self.state = Interpreter.RUNNING_STATE
            self._handle_fault(e,request.instruction)

    def _read_interrupt_returned(self,request,return_val):
        """ A timed input routine returned. Non-zero ends the read. The routine may have read
            input itself, so the outer request comes from its frame rather than pending_input """
        self.pending_input = request
        if return_val:
            if request.kind == InputRequest.LINE:
                self._finish_read_line(request,getattr(request,'partial_text',''),0)
            else:
                self._finish_read_char(request,None)
        else:
            request.initial_text = getattr(request,'partial_text',request.initial_text)
            self.suspend(request)

    def _finish_read_line(self,request,text,terminator):
        instruction = request.instruction
        chars = [self.ztext.to_zscii(c) for c in text.lower()][0:max(request.max_length,0)]
        if self.header.version < 5:
            idx = request.text_buffer+1
            for zscii in chars:
                self.memory[idx] = zscii
                idx+=1
            self.memory[idx] = 0
            text_offset = 1
        else:
            self.memory[request.text_buffer+1] = len(chars)
            for i,zscii in enumerate(chars):
                self.memory[request.text_buffer+2+i] = zscii
            text_offset = 2

        if terminator == ZSCII_NEWLINE:
            self.output_streams.command_entered(text)

        if request.parse_buffer:
            self.dictionary.tokenise(self.memory,chars,request.parse_buffer,text_offset)

        self.pending_input = None
        self.state = Interpreter.RUNNING_STATE
        self.pc = instruction.next_address
        if instruction.has_store:
            self.call_stack.set_var(instruction.store_to,terminator)

    def _finish_read_char(self,request,char):
        instruction = request.instruction
        if char is None:
            zscii = 0
        elif isinstance(char,int):
            zscii = char
        else:
            zscii = self.ztext.to_zscii(char[0]) if char else ZSCII_NEWLINE
        self.pending_input = None
        self.state = Interpreter.RUNNING_STATE
        self.pc = instruction.next_address
        self.call_stack.set_var(instruction.store_to,zscii)

    ### Sound

    def sound_effect(self,number,effect,volume,routine):
        """ 9.2 - number 1 and 2 are bleeps, otherwise effect 1 prepares, 2 starts, 3 stops, 4 unloads """
        if number in (1,2):
            self.sound.bleep(number)
        elif effect == 1:
            self.sound.prepare(number)
        elif effect == 2:
            repeats = volume >> 8
            if repeats == 0 and self.story.blorb:
                repeats = self.story.blorb.repeats(number) or 1
            token = self.sound.play(number,repeats or 1,volume & 0xFF)
            if routine and token is not None:
                self.sound_routines.append((token,routine))
        elif effect == 3:
            self.sound.stop(number)
        elif effect == 4:
            self.sound.unload(number)

    def _poll_sounds(self):
        """ Call the routine of any sound that finished since the last instruction """
        for token,routine in list(self.sound_routines):
            if self.sound.is_finished(token):
                self.sound_routines.remove((token,routine))
                logger.debug('Sound %s finished, calling 0x%x' % (token,routine))
                try:
                    self.call_routine(self.version_config.unpack_routine(routine),self.pc,None)
                except ZMachineException as e:
                    self._handle_fault(e,None)
                return

    ### Save, restore and undo

    def _snapshot(self,pc):
        return quetzal.SaveState(self.header.release_number,self.header.serial,self.header.checksum,pc,
                                 self.memory.dynamic_bytes(),self.call_stack.snapshot())

    def _apply_state(self,state):
        """ Swap in a saved state. Everything was validated before this is called """
        preserved = self.header.flags_2 & Header.PRESERVED_FLAGS_2
        self.memory.replace_dynamic(state.dynamic_memory)
        self.header.flags_2 = (self.header.flags_2 & ~Header.PRESERVED_FLAGS_2) | preserved
        self.call_stack.replace([f.copy() for f in state.frames])
        self._reset_header()

    def _resume_after_save(self,pc):
        """ The saved pc points at the save's branch data (versions 1-3) or store byte. A restored
            save continues as though the save succeeded, with 2 stored """
        if self.header.version < 4:
            address,branch_offset,branch_if_true = extract_branch_offset(self.memory,pc)
            if not branch_if_true:
                self.pc = address
            elif branch_offset in (0,1):
                self.return_from_current_routine(branch_offset)
            else:
                self.pc = address + branch_offset - 2
        else:
            self.call_stack.set_var(self.memory[pc],2)
            self.pc = pc + 1

    def save(self,instruction):
        """ Save to the save handler. Failures are reported as a failed save, never as faults """
        try:
            data = quetzal.encode(self._snapshot(instruction.result_address),self.story.original_dynamic)
            result = self.save_handler.save(data)
        except (OSError,ZMachineException) as e:
            logger.error('Save failed: %s' % e)
            return False
        if result:
            logger.info('Game saved')
        return bool(result)

    def load_save(self,data):
        """ Decode and validate save data against the running story, raising SaveRestoreException """
        state = quetzal.decode(data,self.story.original_dynamic)
        if not state.matches(self.header):
            raise SaveRestoreException('Save is for release %d serial %s, not this story' % (state.release,state.serial))
        if len(state.dynamic_memory) != self.memory.dynamic_end:
            raise SaveRestoreException('Save has %d bytes of dynamic memory, story has %d' % (len(state.dynamic_memory),self.memory.dynamic_end))
        self._check_resume_point(state)
        return state

    def _check_resume_point(self,state):
        """ Make sure the state can be resumed from before anything is swapped in """
        def byte_at(address):
            if address < len(state.dynamic_memory):
                return state.dynamic_memory[address]
            return self.memory[address]

        if not state.frames:
            raise SaveRestoreException('Save has no call frames')
        if state.pc < 0 or state.pc + 1 >= len(self.memory):
            raise SaveRestoreException('Save resumes at 0x%x, outside of memory' % state.pc)
        if self.header.version < 4:
            b = byte_at(state.pc)
            branch_if_true = (b & 0x80) == 0x80
            if b & 0x40:
                branch_offset = b & 0x3F
            else:
                branch_offset = ((b & 0x3F) << 8) | byte_at(state.pc+1)
            if branch_if_true and branch_offset in (0,1) and len(state.frames) < 2:
                raise SaveRestoreException('Save returns from the main routine on resume')
        else:
            store_to = byte_at(state.pc)
            if 0 < store_to < 0x10 and store_to > len(state.frames[-1]):
                raise SaveRestoreException('Save stores to local %d when only %d locals' % (store_to,len(state.frames[-1])))

    def restore(self,instruction=None):
        """ Restore from the restore handler. Returns False, with the machine untouched, on failure """
        try:
            data = self.restore_handler.restore()
            if data is None:
                return False
            state = self.load_save(data)
        except (OSError,ZMachineException) as e:
            logger.error('Restore failed: %s' % e)
            return False
        self._apply_state(state)
        self._resume_after_save(state.pc)
        logger.info('Game restored')
        return True

    def save_undo(self,instruction):
        self.undo_states.append(self._snapshot(instruction.result_address))
        if len(self.undo_states) > MAX_UNDO_STATES:
            self.undo_states.pop(0)
        return True

    def restore_undo(self):
        if not self.undo_states:
            return False
        state = self.undo_states.pop()
        self._apply_state(state)
        self._resume_after_save(state.pc)
        return True

def load_story(data):
    """ Build a Story from story or blorb data. Container problems raise ResourceException,
        story file problems StoryFileException (the latter only once the story is reset) """
    return Story(data)
