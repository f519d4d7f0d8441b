""" Object representation of opcodes, and functions to handle the actual instructions

    Using OOP for the intructions is very inefficient but makes writing the reference implementation easy.

    See http://inform-fiction.org/zmachine/standards/z1point0/sect04.html
"""
import logging
from enum import Enum

from zmachine.errors import InstructionException,ZArithmeticException
from zmachine.dictionary import Dictionary

logger = logging.getLogger(__name__)

MIN_SIGNED= -32768
MAX_SIGNED = 32767
MIN_UNSIGNED = 0
MAX_UNSIGNED = 0xffff

### Constants and utilities
class InstructionType(Enum):
    zeroOP = '0OP'
    oneOP  = '1OP'
    twoOP  = '2OP'
    varOP  = 'VAR'
    extOP  = 'EXT'

class InstructionForm(Enum):
    long_form     = 1
    extended_form = 2
    short_form    = 3
    variable_form = 4

class OperandType(Enum):
    large_constant = 1
    small_constant = 2
    variable = 3
    omitted = 4

class OperandTypeHint(Enum):
    """ Declared with opcode handlers to give hints on how to handle/display operands """
    unsigned = 1
    signed = 2
    address = 3
    packed_address = 4
    routine = 5
    var_ref = 6 # Operand is the number of a variable, accessed indirectly

def convert_to_signed(val):
    val = val & 0xffff
    if val > 0x7fff:
        return -1 * ((val ^ 0xffff) + 1)
    return val

def convert_to_unsigned(val):
    return val & 0xffff

def operand_from_bitfield(bf):
    # 4.2
    if bf == 3:
        return OperandType.omitted
    elif bf == 2:
        return OperandType.variable
    elif bf == 1:
        return OperandType.small_constant
    return OperandType.large_constant

def bitfield_from_operand(optype):
    if optype == OperandType.omitted:
        return 3
    elif optype == OperandType.variable:
        return 2
    elif optype == OperandType.small_constant:
        return 1
    return 0

class Instruction(object):
    """ A decoded instruction. operands are (OperandType, raw value) pairs; variables are not read until
        the instruction is executed, since reading the stack pops it """
    def __init__(self,address,instruction_form,instruction_type,opcode_number,handler,operands,
                 store_to=None,branch_offset=None,branch_if_true=False,literal_string=None,
                 result_address=0,next_address=0):
        self.address = address
        self.instruction_form = instruction_form
        self.instruction_type = instruction_type
        self.opcode_number = opcode_number
        self.handler = handler
        self.operands = operands
        self.store_to = store_to
        self.branch_offset = branch_offset
        self.branch_if_true = branch_if_true
        self.literal_string = literal_string
        # Address of the store byte or branch data, used when resuming a save
        self.result_address = result_address
        self.next_address = next_address

    @property
    def name(self):
        return self.handler['name']

    @property
    def has_store(self):
        return bool(self.handler.get('store'))

    @property
    def has_branch(self):
        return bool(self.handler.get('branch'))

    def check_operand_count(self):
        min_operands = self.handler.get('min',len(self.handler.get('types',())))
        if len(self.operands) < min_operands:
            raise InstructionException('%s takes at least %d operands, got %d' % (self.name,min_operands,len(self.operands)))

    def operand_values(self,interpreter):
        """ Read operand values in order, applying each operand's type hint """
        self.check_operand_count()
        values = []
        types = self.handler.get('types',())
        for i,(optype,val) in enumerate(self.operands):
            if optype == OperandType.variable:
                val = interpreter.call_stack.get_var(val)
            hint = types[i] if i < len(types) else OperandTypeHint.unsigned
            if hint == OperandTypeHint.signed:
                val = convert_to_signed(val)
            values.append(val)
        return values

    def __str__(self):
        return format_description(self)

### Passed in memory, address of next instruction, and some context info, return
### the decoded instruction
def read_instruction(memory,address,version,ztext):
    """ Read the instruction at the given address """
    start_address=address

    store_to = None # Variable # to store the resulting value to
    branch_offset = None # Offset, in bytes, to move PC
    literal_string = None # Unicode version of zchars, if any

    address,instruction_form,instruction_type,opcode_number,operand_types = extract_opcode(memory,address,version)

    # Find opcode handler
    handler = find_handler(instruction_type,opcode_number,version)
    if not handler:
        raise InstructionException('Unknown opcode %s:%d at 0x%x' % (instruction_type.value,opcode_number,start_address),
                                   pc=start_address,recoverable=False)

    address, operands = process_operands(operand_types,memory,address)

    if handler.get('literal_string'):
        address,literal_string = extract_literal_string(memory,address,ztext)

    result_address = address
    # 4.6
    if handler.get('store'):
        store_to = memory[address]
        address+=1

    # 4.7
    branch_if_true=False
    if handler.get('branch'):
        address, branch_offset,branch_if_true = extract_branch_offset(memory,address)

    return Instruction(start_address,instruction_form,instruction_type,opcode_number,handler,operands,
                       store_to=store_to,branch_offset=branch_offset,branch_if_true=branch_if_true,
                       literal_string=literal_string,result_address=result_address,next_address=address)

def find_handler(instruction_type,opcode_number,version):
    handler = OPCODE_HANDLERS.get((instruction_type,opcode_number))
    if isinstance(handler,list):
        for candidate in handler:
            if candidate.get('min_version',1) <= version <= candidate.get('max_version',8):
                return candidate
        return None
    if handler and handler.get('min_version',1) > version:
        return None
    return handler

def extract_opcode(memory,address,version):
    """ Handle section 4.3 """
    # If top two bits are 11, variable form. If 10, short.
    # If opcode is BE, form is extended. Otherwise long.
    b1 = memory[address]
    address+=1

    if b1 == 0xbe and version >= 5:
        # 4.3.4 (Extended form)
        instruction_form = InstructionForm.extended_form
        instruction_type = InstructionType.extOP
        opcode_number = memory[address]
        address+=1
        address,operands = extract_operand_types(memory,address,1)
    elif (b1 & 0xC0 )>> 6 == 3:
        # 4.3.3 (Variable form)
        instruction_form = InstructionForm.variable_form
        if (b1 & 0x20) >> 5 == 1:
            instruction_type = InstructionType.varOP
        else:
            instruction_type = InstructionType.twoOP
        opcode_number = b1 & 0x1F
        # 4.4.3.1 - call_vs2 and call_vn2 have a second types byte
        type_bytes = 1
        if instruction_type == InstructionType.varOP and opcode_number in (12,26):
            type_bytes = 2
        address,operands = extract_operand_types(memory,address,type_bytes)
    elif b1 >> 6 == 2:
        # 4.3.1 (Short form)
        instruction_form = InstructionForm.short_form
        bf45 = (b1 & 0x30) >> 4 # Bits 4 & 5
        if bf45  == 3:
            instruction_type = InstructionType.zeroOP
            operands = []
        else:
            instruction_type = InstructionType.oneOP
            # 4.4.1
            operands = [operand_from_bitfield(bf45)]
        opcode_number = b1 & 0x0F
    else:
        # 4.3.2 (Long form)
        instruction_form = InstructionForm.long_form
        instruction_type = InstructionType.twoOP
        opcode_number = b1 & 0x1F # Bottom 5 bits are opcode #
        operands = [OperandType.small_constant,OperandType.small_constant]
        # 4.4.2
        # If bit 6 is 1, first operand is variable. If bit 5 is 1, second operand is variable.
        if b1 & 0x40: operands[0] = OperandType.variable
        if b1 & 0x20: operands[1] = OperandType.variable

    return address,instruction_form,instruction_type,opcode_number,operands

def extract_operand_types(memory,address,type_bytes):
    """ Read 2-bit operand types, 4 per byte, stopping at the first omitted (4.4.3) """
    operands = []
    done = False
    for i in range(0,type_bytes):
        b = memory[address]
        address+=1
        for shift in (6,4,2,0):
            optype = operand_from_bitfield((b >> shift) & 0x03)
            if optype == OperandType.omitted:
                done = True
            if not done:
                operands.append(optype)
    return address,operands

def process_operands(operand_types,memory,address):
    """ Handle section 4.5 """
    tmp = []
    for optype in operand_types:
        if optype == OperandType.large_constant:
            val = memory.word(address)
            address+=2
        else:
            val = memory[address]
            address+=1
        tmp.append((optype,val))
    return address, tmp

def extract_literal_string(memory,address,ztext):
    """ Extract the literal string from the given memory/address and return the new address + string """
    length = ztext.string_length(memory,address)
    return address+length, ztext.decode(memory,address,length)

def extract_branch_offset(memory,address):
    """ Handle section 4.7 """
    b = memory[address]
    address+=1
    branch_if_true = (b & 0x80) == 0x80
    if (b & 0x40) >> 6:
        # Bit 6 set, offset is bottom 6 bits of byte
        branch_offset = b & 0x3F
    else:
        # Bit 6 not set, offset is a signed 14-bit number: bottom 6 bits + next byte
        next_byte = memory[address]
        address += 1
        branch_offset = ((b & 0x3f) << 8) | next_byte
        if branch_offset & 0x2000:
            branch_offset -= 0x4000
    return address, branch_offset, branch_if_true

def format_description(instruction):
    """ Create a text description of this instruction """
    description = "%s:%s" % (instruction.instruction_type.value, instruction.name)
    for optype,operand in instruction.operands:
        if optype == OperandType.variable:
            if operand == 0:
                description += ' sp'
            else:
                description += ' var%s' % operand
        else:
            description += ' %s' % operand
    if instruction.literal_string:
        description += ' (%s)' % repr(instruction.literal_string).strip("'")
    if instruction.store_to is not None:
        description += ' -> %s' % instruction.store_to
    if instruction.branch_offset is not None:
        if not instruction.branch_if_true:
            branch_invert = '!'
        else:
            branch_invert = ''
        if instruction.branch_offset == 0:
            target = 'rfalse'
        elif instruction.branch_offset == 1:
            target = 'rtrue'
        else:
            target = '%04x' % (instruction.next_address + instruction.branch_offset - 2)
        description += ' ?%s%s' % (branch_invert,target)
    return description

### For testing purposes. Pass in params and make the memory that represents this instruction
def create_instruction(instruction_type, opcode_number, operands, store_to=None, branch_to=None, branch_if_true=True):
    """ Assemble an instruction. operands is a list of (OperandType, value). branch_to is the
        raw branch offset (0 and 1 meaning return false/true) """
    bytes = []

    def append_types(operands):
        types = [bitfield_from_operand(optype) for optype,operand in operands]
        types.extend([3] * (4 - (len(types) % 4 or 4)))
        for i in range(0,len(types),4):
            bytes.append((types[i] << 6) | (types[i+1] << 4) | (types[i+2] << 2) | types[i+3])
        if not operands:
            bytes.append(0xFF)

    if instruction_type == InstructionType.zeroOP:
        bytes.append(0xB0 | opcode_number)
    elif instruction_type == InstructionType.oneOP:
        bytes.append(0x80 | (bitfield_from_operand(operands[0][0]) << 4) | opcode_number)
    elif instruction_type == InstructionType.twoOP:
        if len(operands) != 2 or operands[0][0] == OperandType.large_constant or operands[1][0] == OperandType.large_constant:
            bytes.append(0xC0 | opcode_number)
            append_types(operands)
        else:
            variables = 0
            if operands[0][0] == OperandType.variable:
                variables = variables | 0x40
            if operands[1][0] == OperandType.variable:
                variables = variables | 0x20
            bytes.append(0x00 | opcode_number | variables)
    elif instruction_type == InstructionType.varOP:
        bytes.append(0xE0 | opcode_number)
        if opcode_number in (12,26):
            operands_types = list(operands) + [(OperandType.omitted,0)] * (8 - len(operands))
            append_types(operands_types[0:4])
            append_types(operands_types[4:8])
        else:
            append_types(operands)
    else:
        bytes.append(0xBE)
        bytes.append(opcode_number)
        append_types(operands)

    for optype, operand in operands:
        if optype == OperandType.large_constant:
            operand = convert_to_unsigned(operand)
            bytes.append(operand >> 8)
            bytes.append(operand & 0x00FF)
        elif optype != OperandType.omitted:
            bytes.append(operand & 0xFF)

    if store_to is not None:
        bytes.append(store_to)

    if branch_to is not None:
        flag = 0x80 if branch_if_true else 0x00
        if 0 <= branch_to < 64:
            bytes.append(flag | 0x40 | branch_to)
        else:
            branch_to = branch_to & 0x3FFF
            bytes.append(flag | (branch_to >> 8))
            bytes.append(branch_to & 0xFF)
    return bytearray(bytes)

### Interpreter actions, returned at end of each instruction to tell interpreter how to proceed
class NextInstructionAction(object):
    """ Interpreter should proceed to next instruction, address provided """
    def __init__(self, next_address):
        self.next_address = next_address

    def apply(self,interpreter):
        interpreter.pc = self.next_address

class StoreAction(object):
    """ Store the result to the instruction's store variable and proceed """
    def __init__(self, value, store_to, next_address):
        self.value = value
        self.store_to = store_to
        self.next_address = next_address

    def apply(self,interpreter):
        interpreter.call_stack.set_var(self.store_to,self.value)
        interpreter.pc = self.next_address

class BranchAction(object):
    """ Branch (4.7) if the condition matches the instruction's branch sense """
    def __init__(self, condition, instruction):
        self.condition = condition
        self.instruction = instruction

    def apply(self,interpreter):
        instruction = self.instruction
        if bool(self.condition) != instruction.branch_if_true:
            interpreter.pc = instruction.next_address
        elif instruction.branch_offset in (0,1):
            # 4.7.1
            interpreter.return_from_current_routine(instruction.branch_offset)
        else:
            interpreter.pc = instruction.next_address + instruction.branch_offset - 2

class StoreAndBranchAction(object):
    def __init__(self, value, condition, instruction):
        self.store = StoreAction(value,instruction.store_to,instruction.next_address)
        self.branch = BranchAction(condition,instruction)

    def apply(self,interpreter):
        self.store.apply(interpreter)
        self.branch.apply(interpreter)

class CallAction(object):
    """ Interpreter should call the routine with the provide info """
    def __init__(self, routine_address, store_to, return_to, args=None):
        self.routine_address = routine_address
        self.store_to = store_to
        self.return_to = return_to
        self.args = args or []

    def apply(self,interpreter):
        interpreter.call_routine(self.routine_address,self.return_to,self.store_to,self.args)

class ReturnAction(object):
    """ Interpreter should return from the current routine with the given result """
    def __init__(self, result):
        self.result = result

    def apply(self,interpreter):
        interpreter.return_from_current_routine(self.result)

class JumpRelativeAction(object):
    """ Interpreter should jump relative to the current program counter """
    def __init__(self, branch_offset, next_address):
        self.branch_offset = branch_offset
        self.next_address = next_address

    def apply(self,interpreter):
        interpreter.pc = self.next_address + self.branch_offset - 2

class QuitAction(object):
    def apply(self,interpreter):
        interpreter.quit()

class RestartAction(object):
    def apply(self,interpreter):
        interpreter.restart()

class ReadAction(object):
    """ Instruction is waiting on input. The pc stays on the instruction until input completes it """
    def __init__(self, request):
        self.request = request

    def apply(self,interpreter):
        interpreter.suspend(self.request)

class ContinueAction(object):
    """ Interpreter has already moved the pc (restore, restore_undo, throw) """
    def apply(self,interpreter):
        pass

def store(instruction,value):
    return StoreAction(value,instruction.store_to,instruction.next_address)

def branch(instruction,condition):
    return BranchAction(condition,instruction)

def call(interpreter,instruction,operands,store_result=True):
    """ Handle all the call_* variants. Calling address 0 does nothing and returns false (6.4.3) """
    packed_address = operands[0]
    store_to = instruction.store_to if store_result else None
    if packed_address == 0:
        if store_to is None:
            return NextInstructionAction(instruction.next_address)
        return store(instruction,0)
    address = interpreter.version_config.unpack_routine(packed_address)
    return CallAction(address,store_to,instruction.next_address,operands[1:])

###
### All handlers are passed in an interpreter, the decoded instruction and the operand values
### and return an action object telling interpreter how to proceed
###

## Text

def op_newline(interpreter,instruction,operands):
    interpreter.output_streams.new_line()
    return NextInstructionAction(instruction.next_address)

def op_print(interpreter,instruction,operands):
    interpreter.output_streams.print_str(instruction.literal_string)
    return NextInstructionAction(instruction.next_address)

def op_print_ret(interpreter,instruction,operands):
    interpreter.output_streams.print_str(instruction.literal_string)
    interpreter.output_streams.new_line()
    return ReturnAction(1)

def op_print_paddr(interpreter,instruction,operands):
    addr = interpreter.version_config.unpack_string(operands[0])
    interpreter.output_streams.print_str(interpreter.ztext.decode(interpreter.memory,addr))
    return NextInstructionAction(instruction.next_address)

def op_print_addr(interpreter,instruction,operands):
    interpreter.output_streams.print_str(interpreter.ztext.decode(interpreter.memory,operands[0]))
    return NextInstructionAction(instruction.next_address)

def op_print_num(interpreter,instruction,operands):
    interpreter.output_streams.print_str(str(operands[0]))
    return NextInstructionAction(instruction.next_address)

def op_print_char(interpreter,instruction,operands):
    interpreter.output_streams.print_str(interpreter.ztext.zscii_to_unicode(operands[0]))
    return NextInstructionAction(instruction.next_address)

def op_print_unicode(interpreter,instruction,operands):
    interpreter.output_streams.print_str(chr(operands[0]))
    return NextInstructionAction(instruction.next_address)

def op_check_unicode(interpreter,instruction,operands):
    # Bit 0 - can print, bit 1 - can read
    if 0xD800 <= operands[0] <= 0xDFFF:
        return store(instruction,0)
    return store(instruction,3)

def op_print_obj(interpreter,instruction,operands):
    interpreter.output_streams.print_str(interpreter.object_name(operands[0]))
    return NextInstructionAction(instruction.next_address)

def op_print_table(interpreter,instruction,operands):
    text_address,width = operands[0],operands[1]
    height = operands[2] if len(operands) > 2 else 1
    skip = operands[3] if len(operands) > 3 else 0
    address = text_address
    for row in range(0,height):
        if row:
            interpreter.output_streams.new_line()
        chars = [interpreter.ztext.zscii_to_unicode(interpreter.memory[address+i]) for i in range(0,width)]
        interpreter.output_streams.print_str(''.join(chars))
        address += width + skip
    return NextInstructionAction(instruction.next_address)

## Input

def op_sread(interpreter,instruction,operands):
    """ read text parse [time routine] """
    parse_buffer = operands[1] if len(operands) > 1 else 0
    time = operands[2] if len(operands) > 2 else 0
    routine = operands[3] if len(operands) > 3 else 0
    return ReadAction(interpreter.begin_read_line(instruction,operands[0],parse_buffer,time,routine))

def op_read_char(interpreter,instruction,operands):
    """ read_char 1 [time routine] """
    time = operands[1] if len(operands) > 1 else 0
    routine = operands[2] if len(operands) > 2 else 0
    return ReadAction(interpreter.begin_read_char(instruction,time,routine))

def op_tokenise(interpreter,instruction,operands):
    text_buffer,parse_buffer = operands[0],operands[1]
    dictionary_address = operands[2] if len(operands) > 2 else 0
    skip_unknown = len(operands) > 3 and operands[3] != 0
    if dictionary_address:
        dictionary = Dictionary(interpreter.memory,dictionary_address,interpreter.ztext)
    else:
        dictionary = interpreter.dictionary
    chars,text_offset = interpreter.read_text_buffer(text_buffer)
    dictionary.tokenise(interpreter.memory,chars,parse_buffer,text_offset,skip_unknown=skip_unknown)
    return NextInstructionAction(instruction.next_address)

def op_encode_text(interpreter,instruction,operands):
    zscii_text,length,start,coded_text = operands[0:4]
    chars = [interpreter.memory[zscii_text+start+i] for i in range(0,length)]
    text = ''.join([interpreter.ztext.zscii_to_unicode(c) for c in chars])
    encoded = interpreter.ztext.encrypt(text)
    for i,b in enumerate(encoded):
        interpreter.memory[coded_text+i] = b
    return NextInstructionAction(instruction.next_address)

## Windows and streams. These pass through to the capabilities

def op_split_window(interpreter,instruction,operands):
    interpreter.screen.split_window(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_set_window(interpreter,instruction,operands):
    interpreter.screen.set_window(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_erase_window(interpreter,instruction,operands):
    interpreter.screen.erase_window(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_erase_line(interpreter,instruction,operands):
    interpreter.screen.erase_line(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_set_cursor(interpreter,instruction,operands):
    interpreter.screen.set_cursor(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

def op_get_cursor(interpreter,instruction,operands):
    row,column = interpreter.screen.get_cursor()
    interpreter.memory.set_word(operands[0],row)
    interpreter.memory.set_word(operands[0]+2,column)
    return NextInstructionAction(instruction.next_address)

def op_set_text_style(interpreter,instruction,operands):
    interpreter.screen.set_text_style(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_buffer_mode(interpreter,instruction,operands):
    interpreter.output_streams.set_buffer(operands[0] != 0)
    return NextInstructionAction(instruction.next_address)

def op_set_colour(interpreter,instruction,operands):
    interpreter.screen.set_colour(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

def op_set_true_colour(interpreter,instruction,operands):
    interpreter.screen.set_true_colour(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

def op_set_font(interpreter,instruction,operands):
    return store(instruction,interpreter.screen.set_font(operands[0]))

def op_output_stream(interpreter,instruction,operands):
    stream = operands[0]
    if stream > 0:
        table = operands[1] if len(operands) > 1 else 0
        interpreter.output_streams.select_stream(stream,table=table)
    elif stream < 0:
        interpreter.output_streams.deselect_stream(-stream)
    return NextInstructionAction(instruction.next_address)

def op_input_stream(interpreter,instruction,operands):
    interpreter.input_streams.select_stream(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_sound_effect(interpreter,instruction,operands):
    number = operands[0] if operands else 1
    effect = operands[1] if len(operands) > 1 else 2
    volume = operands[2] if len(operands) > 2 else 0xFF
    routine = operands[3] if len(operands) > 3 else 0
    interpreter.sound_effect(number,effect,volume,routine)
    return NextInstructionAction(instruction.next_address)

def op_show_status(interpreter,instruction,operands):
    if interpreter.version_config.version < 4:
        interpreter.show_status()
    return NextInstructionAction(instruction.next_address)

## Branching and calls
def op_call(interpreter,instruction,operands):
    return call(interpreter,instruction,operands)

def op_call_n(interpreter,instruction,operands):
    return call(interpreter,instruction,operands,store_result=False)

def op_ret(interpreter,instruction,operands):
    return ReturnAction(operands[0])

def op_ret_popped(interpreter,instruction,operands):
    return ReturnAction(interpreter.call_stack.current().pop_from_stack())

def op_rtrue(interpreter,instruction,operands):
    return ReturnAction(1)

def op_rfalse(interpreter,instruction,operands):
    return ReturnAction(0)

def op_je(interpreter,instruction,operands):
    a = operands[0]
    return branch(instruction,a in operands[1:])

def op_jl(interpreter,instruction,operands):
    return branch(instruction,operands[0] < operands[1])

def op_jg(interpreter,instruction,operands):
    return branch(instruction,operands[0] > operands[1])

def op_jz(interpreter,instruction,operands):
    return branch(instruction,operands[0] == 0)

def op_jump(interpreter,instruction,operands):
    return JumpRelativeAction(operands[0],instruction.next_address)

def op_inc_chk(interpreter,instruction,operands):
    var_num,comp_to = operands[0],operands[1]
    var = convert_to_signed(convert_to_signed(interpreter.call_stack.get_var(var_num,indirect=True)) + 1)
    interpreter.call_stack.set_var(var_num,var,indirect=True)
    return branch(instruction,var > comp_to)

def op_dec_chk(interpreter,instruction,operands):
    var_num,comp_to = operands[0],operands[1]
    var = convert_to_signed(convert_to_signed(interpreter.call_stack.get_var(var_num,indirect=True)) - 1)
    interpreter.call_stack.set_var(var_num,var,indirect=True)
    return branch(instruction,var < comp_to)

def op_check_arg_count(interpreter,instruction,operands):
    return branch(instruction,operands[0] <= interpreter.call_stack.current().argument_count)

def op_catch(interpreter,instruction,operands):
    return store(instruction,len(interpreter.call_stack))

def op_throw(interpreter,instruction,operands):
    value,frame = operands[0],operands[1]
    interpreter.call_stack.unwind_to(frame)
    return ReturnAction(value)

def op_piracy(interpreter,instruction,operands):
    return branch(instruction,True)

def op_verify(interpreter,instruction,operands):
    return branch(instruction,interpreter.verify())

## Memory/Variables
def op_store(interpreter,instruction,operands):
    interpreter.call_stack.set_var(operands[0],operands[1],indirect=True)
    return NextInstructionAction(instruction.next_address)

def op_load(interpreter,instruction,operands):
    return store(instruction,interpreter.call_stack.get_var(operands[0],indirect=True))

def op_storew(interpreter,instruction,operands):
    array,word_index,value = operands[0:3]
    interpreter.memory.set_word((array + (2*word_index)) & 0xFFFF,value)
    return NextInstructionAction(instruction.next_address)

def op_storeb(interpreter,instruction,operands):
    array,byte_index,value = operands[0:3]
    interpreter.memory[(array + byte_index) & 0xFFFF] = value
    return NextInstructionAction(instruction.next_address)

def op_loadw(interpreter,instruction,operands):
    array,word_index = operands
    return store(instruction,interpreter.memory.word((array + (2*word_index)) & 0xFFFF))

def op_loadb(interpreter,instruction,operands):
    array,byte_index = operands
    return store(instruction,interpreter.memory[(array + byte_index) & 0xFFFF])

def op_push(interpreter,instruction,operands):
    interpreter.call_stack.current().push_to_stack(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_pull(interpreter,instruction,operands):
    value = interpreter.call_stack.current().pop_from_stack()
    interpreter.call_stack.set_var(operands[0],value,indirect=True)
    return NextInstructionAction(instruction.next_address)

def op_pop(interpreter,instruction,operands):
    interpreter.call_stack.current().pop_from_stack()
    return NextInstructionAction(instruction.next_address)

def op_scan_table(interpreter,instruction,operands):
    x,table,length = operands[0:3]
    form = operands[3] if len(operands) > 3 else 0x82
    field_length = form & 0x7F
    if field_length == 0:
        raise InstructionException('scan_table with zero field length')
    address = table
    for i in range(0,length):
        if form & 0x80:
            val = interpreter.memory.word(address)
        else:
            val = interpreter.memory[address]
        if val == x:
            return StoreAndBranchAction(address,True,instruction)
        address+=field_length
    return StoreAndBranchAction(0,False,instruction)

def op_copy_table(interpreter,instruction,operands):
    first,second,size = operands[0:3]
    memory = interpreter.memory
    if second == 0:
        for i in range(0,abs(size)):
            memory[first+i] = 0
    elif size < 0:
        # Copy forwards even if the tables overlap
        for i in range(0,-size):
            memory[second+i] = memory[first+i]
    else:
        data = [memory[first+i] for i in range(0,size)]
        for i,b in enumerate(data):
            memory[second+i] = b
    return NextInstructionAction(instruction.next_address)

## Objects
def op_jin(interpreter,instruction,operands):
    return branch(instruction,interpreter.object_table.parent(operands[0]) == operands[1])

def op_get_sibling(interpreter,instruction,operands):
    sibling = interpreter.object_table.sibling(operands[0])
    return StoreAndBranchAction(sibling,sibling != 0,instruction)

def op_get_child(interpreter,instruction,operands):
    child = interpreter.object_table.child(operands[0])
    return StoreAndBranchAction(child,child != 0,instruction)

def op_get_parent(interpreter,instruction,operands):
    return store(instruction,interpreter.object_table.parent(operands[0]))

def op_remove_obj(interpreter,instruction,operands):
    interpreter.object_table.remove(operands[0])
    return NextInstructionAction(instruction.next_address)

def op_insert_obj(interpreter,instruction,operands):
    interpreter.object_table.insert(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

def op_test_attr(interpreter,instruction,operands):
    return branch(instruction,interpreter.object_table.attribute(operands[0],operands[1]))

def op_set_attr(interpreter,instruction,operands):
    interpreter.object_table.set_attribute(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

def op_clear_attr(interpreter,instruction,operands):
    interpreter.object_table.clear_attribute(operands[0],operands[1])
    return NextInstructionAction(instruction.next_address)

## Properties
def op_get_prop(interpreter,instruction,operands):
    return store(instruction,interpreter.object_table.get_prop(operands[0],operands[1]))

def op_get_prop_addr(interpreter,instruction,operands):
    return store(instruction,interpreter.object_table.property_address(operands[0],operands[1]))

def op_get_next_prop(interpreter,instruction,operands):
    return store(instruction,interpreter.object_table.get_next_prop(operands[0],operands[1]))

def op_get_prop_len(interpreter,instruction,operands):
    return store(instruction,interpreter.object_table.get_property_length(operands[0]))

def op_put_prop(interpreter,instruction,operands):
    interpreter.object_table.put_prop(operands[0],operands[1],operands[2])
    return NextInstructionAction(instruction.next_address)

## Math
def op_add(interpreter,instruction,operands):
    return store(instruction,operands[0] + operands[1])

def op_sub(interpreter,instruction,operands):
    return store(instruction,operands[0] - operands[1])

def op_mul(interpreter,instruction,operands):
    return store(instruction,operands[0] * operands[1])

def _check_divisor(instruction,operands):
    if operands[1] == 0:
        raise ZArithmeticException('%s of %d by zero' % (instruction.name,operands[0]))

def op_div(interpreter,instruction,operands):
    _check_divisor(instruction,operands)
    a,b = operands
    # Truncate toward zero
    result = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        result = -result
    return store(instruction,result)

def op_mod(interpreter,instruction,operands):
    _check_divisor(instruction,operands)
    a,b = operands
    # Result takes the sign of the dividend
    result = abs(a) % abs(b)
    if a < 0:
        result = -result
    return store(instruction,result)

def op_inc(interpreter,instruction,operands):
    var = interpreter.call_stack.get_var(operands[0],indirect=True)
    interpreter.call_stack.set_var(operands[0],var+1,indirect=True)
    return NextInstructionAction(instruction.next_address)

def op_dec(interpreter,instruction,operands):
    var = interpreter.call_stack.get_var(operands[0],indirect=True)
    interpreter.call_stack.set_var(operands[0],var-1,indirect=True)
    return NextInstructionAction(instruction.next_address)

def op_random(interpreter,instruction,operands):
    n = operands[0]
    if n > 0:
        return store(instruction,interpreter.rng.randint(n))
    interpreter.rng.reseed(n)
    return store(instruction,0)

### Bitwise
def op_not(interpreter,instruction,operands):
    return store(instruction,operands[0] ^ 0xFFFF)

def op_test(interpreter,instruction,operands):
    bitmap,flags = operands
    return branch(instruction,bitmap & flags == flags)

def op_or(interpreter,instruction,operands):
    return store(instruction,operands[0] | operands[1])

def op_and(interpreter,instruction,operands):
    return store(instruction,operands[0] & operands[1])

def _shift_fault(interpreter,instruction,places,fallback):
    """ Out of range shifts still store a result before faulting, so the store target is never stale """
    interpreter.call_stack.set_var(instruction.store_to,fallback)
    raise ZArithmeticException('%s by %d places' % (instruction.name,places))

def op_log_shift(interpreter,instruction,operands):
    number,places = operands
    if places < -15 or places > 15:
        _shift_fault(interpreter,instruction,places,0)
    if places >= 0:
        return store(instruction,(number << places) & 0xFFFF)
    return store(instruction,number >> -places)

def op_art_shift(interpreter,instruction,operands):
    number,places = operands
    if places < -15 or places > 15:
        _shift_fault(interpreter,instruction,places,0xFFFF if number < 0 and places < 0 else 0)
    if places >= 0:
        return store(instruction,(number << places) & 0xFFFF)
    return store(instruction,number >> -places)

## Game state
def op_quit(interpreter,instruction,operands):
    return QuitAction()

def op_nop(interpreter,instruction,operands):
    return NextInstructionAction(instruction.next_address)

def op_restart(interpreter,instruction,operands):
    return RestartAction()

def op_save(interpreter,instruction,operands):
    """ Version 1-3 branch on success, later versions store 0 on failure, 1 on success """
    if operands:
        # Auxiliary table saves
        logger.warning('save of a memory table is not supported')
        return store(instruction,0)
    result = interpreter.save(instruction)
    if instruction.has_branch:
        return branch(instruction,result)
    return store(instruction,1 if result else 0)

def op_restore(interpreter,instruction,operands):
    if operands:
        logger.warning('restore of a memory table is not supported')
        return store(instruction,0)
    if interpreter.restore(instruction):
        # pc and stack now come from the saved game
        return ContinueAction()
    if instruction.has_branch:
        return branch(instruction,False)
    return store(instruction,0)

def op_save_undo(interpreter,instruction,operands):
    return store(instruction,1 if interpreter.save_undo(instruction) else 0)

def op_restore_undo(interpreter,instruction,operands):
    if interpreter.restore_undo():
        return ContinueAction()
    return store(instruction,0)

### 14.1
ADDR = OperandTypeHint.address
PADDR = OperandTypeHint.packed_address
ROUTINE = OperandTypeHint.routine
SIGNED = OperandTypeHint.signed
UNSIGNED = OperandTypeHint.unsigned
VAR_REF = OperandTypeHint.var_ref

OPCODE_HANDLERS = {
(InstructionType.zeroOP,0):  {'name': 'rtrue', 'handler': op_rtrue},
(InstructionType.zeroOP,1):  {'name': 'rfalse', 'handler': op_rfalse},
(InstructionType.zeroOP,2):  {'name': 'print', 'literal_string': True,'handler': op_print},
(InstructionType.zeroOP,3):  {'name': 'print_ret', 'literal_string': True,'handler': op_print_ret},
(InstructionType.zeroOP,4):  {'name': 'nop', 'handler': op_nop},
(InstructionType.zeroOP,5):  [{'name': 'save','branch':True, 'max_version': 3, 'handler': op_save},
                              {'name': 'save','store':True, 'min_version': 4, 'handler': op_save}],
(InstructionType.zeroOP,6):  [{'name': 'restore','branch':True, 'max_version': 3, 'handler': op_restore},
                              {'name': 'restore','store':True, 'min_version': 4, 'handler': op_restore}],
(InstructionType.zeroOP,7):  {'name': 'restart','handler': op_restart},
(InstructionType.zeroOP,8):  {'name': 'ret_popped','handler': op_ret_popped},
(InstructionType.zeroOP,9):  [{'name': 'pop','max_version': 4,'handler': op_pop},
                              {'name': 'catch','store': True,'min_version': 5,'handler': op_catch}],
(InstructionType.zeroOP,10): {'name': 'quit','handler': op_quit},
(InstructionType.zeroOP,11): {'name': 'new_line','handler': op_newline},
(InstructionType.zeroOP,12): {'name': 'show_status','handler': op_show_status},
(InstructionType.zeroOP,13): {'name': 'verify','branch': True, 'handler': op_verify},
(InstructionType.zeroOP,15): {'name': 'piracy','branch': True, 'min_version': 5, 'handler': op_piracy},

(InstructionType.oneOP, 0):  {'name': 'jz','branch': True, 'types': (UNSIGNED,), 'handler': op_jz},
(InstructionType.oneOP, 1):  {'name': 'get_sibling','branch': True, 'store': True, 'types': (UNSIGNED,), 'handler': op_get_sibling},
(InstructionType.oneOP, 2):  {'name': 'get_child','branch': True, 'store': True, 'types': (UNSIGNED,), 'handler': op_get_child},
(InstructionType.oneOP, 3):  {'name': 'get_parent', 'store': True, 'types': (UNSIGNED,), 'handler': op_get_parent},
(InstructionType.oneOP, 4):  {'name': 'get_prop_len', 'store': True, 'types': (ADDR,), 'handler': op_get_prop_len},
(InstructionType.oneOP, 5):  {'name': 'inc', 'types': (VAR_REF,), 'handler': op_inc},
(InstructionType.oneOP, 6):  {'name': 'dec', 'types': (VAR_REF,), 'handler': op_dec},
(InstructionType.oneOP, 7):  {'name': 'print_addr','types': (ADDR,), 'handler': op_print_addr},
(InstructionType.oneOP, 8):  {'name': 'call_1s','store': True,'min_version': 4,'types': (ROUTINE,), 'handler': op_call},
(InstructionType.oneOP, 9):  {'name': 'remove_obj','types': (UNSIGNED,), 'handler': op_remove_obj},
(InstructionType.oneOP, 10): {'name': 'print_obj','types': (UNSIGNED,), 'handler': op_print_obj},
(InstructionType.oneOP, 11): {'name': 'ret','types': (UNSIGNED,), 'handler': op_ret},
(InstructionType.oneOP, 12): {'name': 'jump','types': (SIGNED,), 'handler': op_jump},
(InstructionType.oneOP, 13): {'name': 'print_paddr','types': (PADDR,), 'handler': op_print_paddr},
(InstructionType.oneOP, 14): {'name': 'load','store': True, 'types': (VAR_REF,), 'handler': op_load},
(InstructionType.oneOP, 15): [{'name': 'not','store': True,'max_version': 4,'types': (UNSIGNED,), 'handler': op_not},
                              {'name': 'call_1n','min_version': 5,'types': (ROUTINE,), 'handler': op_call_n}],

(InstructionType.twoOP,1):   {'name': 'je','branch': True,'min': 1,'types': (SIGNED,SIGNED,SIGNED,SIGNED),'handler': op_je},
(InstructionType.twoOP,2):   {'name': 'jl','branch': True,'types': (SIGNED,SIGNED,),'handler': op_jl},
(InstructionType.twoOP,3):   {'name': 'jg','branch': True,'types': (SIGNED,SIGNED,),'handler': op_jg},
(InstructionType.twoOP,4):   {'name': 'dec_chk','branch': True,'types': (VAR_REF,SIGNED,),'handler': op_dec_chk},
(InstructionType.twoOP,5):   {'name': 'inc_chk','branch': True,'types': (VAR_REF,SIGNED,),'handler': op_inc_chk},
(InstructionType.twoOP,6):   {'name': 'jin','branch': True,'types': (UNSIGNED,UNSIGNED,),'handler': op_jin},
(InstructionType.twoOP,7):   {'name': 'test','branch': True,'types': (UNSIGNED,UNSIGNED,),'handler': op_test},
(InstructionType.twoOP,8):   {'name': 'or','store': True,'types': (UNSIGNED,UNSIGNED,),'handler': op_or},
(InstructionType.twoOP,9):   {'name': 'and','store': True,'types': (UNSIGNED,UNSIGNED,),'handler': op_and},
(InstructionType.twoOP,10):  {'name': 'test_attr','branch': True,'types': (UNSIGNED,UNSIGNED,),'handler': op_test_attr},
(InstructionType.twoOP,11):  {'name': 'set_attr','types': (UNSIGNED,UNSIGNED,),'handler': op_set_attr},
(InstructionType.twoOP,12):  {'name': 'clear_attr','types': (UNSIGNED,UNSIGNED,),'handler': op_clear_attr},
(InstructionType.twoOP,13):  {'name': 'store','types': (VAR_REF,UNSIGNED,),'handler': op_store},
(InstructionType.twoOP,14):  {'name': 'insert_obj','types': (UNSIGNED,UNSIGNED,),'handler': op_insert_obj},
(InstructionType.twoOP,15):  {'name': 'loadw','store':True,'types': (ADDR,UNSIGNED,),'handler': op_loadw},
(InstructionType.twoOP,16):  {'name': 'loadb','store':True,'types': (ADDR,UNSIGNED,),'handler': op_loadb},
(InstructionType.twoOP,17):  {'name': 'get_prop','store': True, 'types': (UNSIGNED,UNSIGNED,),'handler': op_get_prop},
(InstructionType.twoOP,18):  {'name': 'get_prop_addr','store': True, 'types': (UNSIGNED,UNSIGNED,),'handler': op_get_prop_addr},
(InstructionType.twoOP,19):  {'name': 'get_next_prop','store': True, 'types': (UNSIGNED,UNSIGNED,),'handler': op_get_next_prop},
(InstructionType.twoOP,20):  {'name': 'add','store': True, 'types': (SIGNED,SIGNED,),'handler': op_add},
(InstructionType.twoOP,21):  {'name': 'sub','store': True, 'types': (SIGNED,SIGNED,),'handler': op_sub},
(InstructionType.twoOP,22):  {'name': 'mul','store': True, 'types': (SIGNED,SIGNED,),'handler': op_mul},
(InstructionType.twoOP,23):  {'name': 'div','store': True, 'types': (SIGNED,SIGNED,),'handler': op_div},
(InstructionType.twoOP,24):  {'name': 'mod','store': True, 'types': (SIGNED,SIGNED,),'handler': op_mod},
(InstructionType.twoOP,25):  {'name': 'call_2s','store': True,'min_version': 4, 'types': (ROUTINE,UNSIGNED,),'handler': op_call},
(InstructionType.twoOP,26):  {'name': 'call_2n','min_version': 5, 'types': (ROUTINE,UNSIGNED,),'handler': op_call_n},
(InstructionType.twoOP,27):  {'name': 'set_colour','min_version': 5, 'types': (UNSIGNED,UNSIGNED,),'handler': op_set_colour},
(InstructionType.twoOP,28):  {'name': 'throw','min_version': 5, 'types': (UNSIGNED,UNSIGNED,),'handler': op_throw},

(InstructionType.varOP,0):   {'name': 'call','store': True,'min': 1,
                              'types': (ROUTINE,UNSIGNED,UNSIGNED,UNSIGNED),'handler': op_call},
(InstructionType.varOP,1):   {'name': 'storew','types': (ADDR,UNSIGNED,UNSIGNED),'handler': op_storew},
(InstructionType.varOP,2):   {'name': 'storeb','types': (ADDR,UNSIGNED,UNSIGNED),'handler': op_storeb},
(InstructionType.varOP,3):   {'name': 'put_prop','types': (UNSIGNED,UNSIGNED,UNSIGNED),'handler': op_put_prop},
(InstructionType.varOP,4):   [{'name': 'sread','max_version': 4,'min': 1,
                               'types': (ADDR,ADDR,UNSIGNED,ROUTINE),'handler': op_sread},
                              {'name': 'aread','store': True,'min_version': 5,'min': 1,
                               'types': (ADDR,ADDR,UNSIGNED,ROUTINE),'handler': op_sread}],
(InstructionType.varOP,5):   {'name': 'print_char','types': (UNSIGNED,),'handler': op_print_char},
(InstructionType.varOP,6):   {'name': 'print_num','types': (SIGNED,),'handler': op_print_num},
(InstructionType.varOP,7):   {'name': 'random','store': True,'types': (SIGNED,),'handler': op_random},
(InstructionType.varOP,8):   {'name': 'push','types': (UNSIGNED,),'handler': op_push},
(InstructionType.varOP,9):   {'name': 'pull','types': (VAR_REF,),'handler': op_pull},
(InstructionType.varOP,10):  {'name': 'split_window','min_version': 3,'types': (UNSIGNED,),'handler': op_split_window},
(InstructionType.varOP,11):  {'name': 'set_window','min_version': 3,'types': (UNSIGNED,),'handler': op_set_window},
(InstructionType.varOP,12):  {'name': 'call_vs2','store': True,'min_version': 4,'min': 1,
                              'types': (ROUTINE,) + (UNSIGNED,)*7,'handler': op_call},
(InstructionType.varOP,13):  {'name': 'erase_window','min_version': 4,'types': (SIGNED,),'handler': op_erase_window},
(InstructionType.varOP,14):  {'name': 'erase_line','min_version': 4,'types': (UNSIGNED,),'handler': op_erase_line},
(InstructionType.varOP,15):  {'name': 'set_cursor','min_version': 4,'min': 2,'types': (SIGNED,UNSIGNED,UNSIGNED),'handler': op_set_cursor},
(InstructionType.varOP,16):  {'name': 'get_cursor','min_version': 4,'types': (ADDR,),'handler': op_get_cursor},
(InstructionType.varOP,17):  {'name': 'set_text_style','min_version': 4,'types': (UNSIGNED,),'handler': op_set_text_style},
(InstructionType.varOP,18):  {'name': 'buffer_mode','min_version': 4,'types': (UNSIGNED,),'handler': op_buffer_mode},
(InstructionType.varOP,19):  {'name': 'output_stream','min_version': 3,'min': 1,'types': (SIGNED,ADDR,UNSIGNED),'handler': op_output_stream},
(InstructionType.varOP,20):  {'name': 'input_stream','min_version': 3,'types': (UNSIGNED,),'handler': op_input_stream},
(InstructionType.varOP,21):  {'name': 'sound_effect','min_version': 3,'min': 0,
                              'types': (UNSIGNED,UNSIGNED,UNSIGNED,ROUTINE),'handler': op_sound_effect},
(InstructionType.varOP,22):  {'name': 'read_char','store': True,'min_version': 4,'min': 1,
                              'types': (UNSIGNED,UNSIGNED,ROUTINE),'handler': op_read_char},
(InstructionType.varOP,23):  {'name': 'scan_table','store': True,'branch': True,'min_version': 4,'min': 3,
                              'types': (UNSIGNED,ADDR,UNSIGNED,UNSIGNED),'handler': op_scan_table},
(InstructionType.varOP,24):  {'name': 'not','store': True,'min_version': 5,'types': (UNSIGNED,),'handler': op_not},
(InstructionType.varOP,25):  {'name': 'call_vn','min_version': 5,'min': 1,
                              'types': (ROUTINE,UNSIGNED,UNSIGNED,UNSIGNED),'handler': op_call_n},
(InstructionType.varOP,26):  {'name': 'call_vn2','min_version': 5,'min': 1,
                              'types': (ROUTINE,) + (UNSIGNED,)*7,'handler': op_call_n},
(InstructionType.varOP,27):  {'name': 'tokenise','min_version': 5,'min': 2,
                              'types': (ADDR,ADDR,ADDR,UNSIGNED),'handler': op_tokenise},
(InstructionType.varOP,28):  {'name': 'encode_text','min_version': 5,
                              'types': (ADDR,UNSIGNED,UNSIGNED,ADDR),'handler': op_encode_text},
(InstructionType.varOP,29):  {'name': 'copy_table','min_version': 5,
                              'types': (ADDR,ADDR,SIGNED),'handler': op_copy_table},
(InstructionType.varOP,30):  {'name': 'print_table','min_version': 5,'min': 2,
                              'types': (ADDR,UNSIGNED,UNSIGNED,UNSIGNED),'handler': op_print_table},
(InstructionType.varOP,31):  {'name': 'check_arg_count','branch': True,'min_version': 5,
                              'types': (UNSIGNED,),'handler': op_check_arg_count},

(InstructionType.extOP,0):   {'name': 'save','store': True,'min': 0,'types': (ADDR,UNSIGNED,ADDR),'handler': op_save},
(InstructionType.extOP,1):   {'name': 'restore','store': True,'min': 0,'types': (ADDR,UNSIGNED,ADDR),'handler': op_restore},
(InstructionType.extOP,2):   {'name': 'log_shift','store': True,'types': (UNSIGNED,SIGNED),'handler': op_log_shift},
(InstructionType.extOP,3):   {'name': 'art_shift','store': True,'types': (SIGNED,SIGNED),'handler': op_art_shift},
(InstructionType.extOP,4):   {'name': 'set_font','store': True,'types': (UNSIGNED,),'handler': op_set_font},
(InstructionType.extOP,9):   {'name': 'save_undo','store': True,'handler': op_save_undo},
(InstructionType.extOP,10):  {'name': 'restore_undo','store': True,'handler': op_restore_undo},
(InstructionType.extOP,11):  {'name': 'print_unicode','types': (UNSIGNED,),'handler': op_print_unicode},
(InstructionType.extOP,12):  {'name': 'check_unicode','store': True,'types': (UNSIGNED,),'handler': op_check_unicode},
(InstructionType.extOP,13):  {'name': 'set_true_colour','min': 2,'types': (SIGNED,SIGNED,UNSIGNED),'handler': op_set_true_colour},
}
