""" Tests for the interpreter, running small assembled stories """
import unittest
import io
import os
import tempfile
from unittest import mock

from zmachine.interpreter import Interpreter,InputRequest,Story,load_story,SaveHandler,RestoreHandler,MAX_UNDO_STATES
from zmachine.errors import ErrorPolicy,ZArithmeticException,InstructionException,SaveRestoreException,\
                            StoryFileException,StackException,MemoryAccessException,ObjectException,\
                            ConfigException,ResourceException,ErrorKind
from zmachine.config import Config
from zmachine.memory import Memory
from zmachine.text import ZText
from zmachine.io import OutputStreams,InputStreams,InputStream,Sound
from zmachine.instructions import InstructionForm,InstructionType,OperandType,\
                                  read_instruction,extract_opcode,create_instruction,\
                                  process_operands,extract_branch_offset,convert_to_signed
from zmachine import quetzal
from zmachine.tests import sample_story,make_blorb,TEXT_BUFFER,PARSE_BUFFER,CODE

from generic_terp import StringIOScreen,FileInputStream,FileSaveHandler,FileRestoreHandler,STDOUTScreen
import terp
import dump

S = OperandType.small_constant
L = OperandType.large_constant
V = OperandType.variable

def constant(value):
    if value < 0 or value > 255:
        return (L,value)
    return (S,value)

def store_global(n,value):
    return create_instruction(InstructionType.twoOP,13,[(S,0x10+n),constant(value)])

def op(instruction_type,opcode_number,*operands,**kwargs):
    return create_instruction(instruction_type,opcode_number,list(operands),**kwargs)

def print_text(ztext,text):
    return op(InstructionType.zeroOP,2) + ztext.pack(ztext.encode(text,0))

QUIT = op(InstructionType.zeroOP,10)
RTRUE = op(InstructionType.zeroOP,0)
RFALSE = op(InstructionType.zeroOP,1)
NEW_LINE = op(InstructionType.zeroOP,11)

class TestSaveHandler(SaveHandler):
    def __init__(self):
        self.data = None

    def save(self,data):
        self.data = data
        return True

class TestRestoreHandler(RestoreHandler):
    def __init__(self,save_handler):
        self.save_handler = save_handler

    def restore(self):
        return self.save_handler.data

class TestSound(Sound):
    def __init__(self):
        self.played = []
        self.finished = True

    def play(self,number,repeats,volume):
        self.played.append((number,repeats,volume))
        return number

    def is_finished(self,token):
        return self.finished

class TestStoryMixin(object):
    """ Each test adds code to self.builder, then loads and runs it """
    version = 3

    def setUp(self):
        self.builder = sample_story(self.version)
        self.reports = []

    def load(self,policy=ErrorPolicy.CONTINUE_WARN_ONCE,keyboard=None,sound=None,data=None):
        self.output = io.StringIO()
        self.screen = StringIOScreen(self.output)
        self.save_handler = TestSaveHandler()
        self.zmachine = Interpreter(load_story(data or self.builder.build()),
                                    OutputStreams(self.screen),
                                    InputStreams(keyboard or InputStream()),
                                    self.save_handler,
                                    TestRestoreHandler(self.save_handler),
                                    screen=self.screen,
                                    sound=sound,
                                    config=Config(error_handling=policy),
                                    report_f=lambda fault,description: self.reports.append(fault))
        self.zmachine.reset()
        return self.zmachine

    def code(self,*instructions):
        """ Add instructions to the main routine, returning their addresses """
        return [self.builder.add_code(i) for i in instructions]

    def run_story(self,**kwargs):
        zmachine = self.load(**kwargs)
        zmachine.run(max_steps=1000)
        return zmachine

    def global_var(self,n):
        return self.zmachine.call_stack.get_nth_global(n)

    def assertHalted(self):
        self.assertEqual(Interpreter.HALTED_STATE,self.zmachine.state)

class InstructionTests(unittest.TestCase):
    def test_create_instruction(self):
        mem = create_instruction(InstructionType.twoOP, 1,[(S,0),(S,17)],branch_to=0x19)
        self.assertEqual(bytearray(b'\x01\x00\x11\xd9'), mem)

        mem = create_instruction(InstructionType.twoOP, 1,[(L,0),(S,17)])
        self.assertEqual(bytearray.fromhex('c11f000011'), mem)

        mem = create_instruction(InstructionType.twoOP, 1,[(S,0),(S,17)],branch_to=-100,branch_if_true=False)
        self.assertEqual(bytearray.fromhex('0100113f9c'), mem)

    def test_extract_opcode(self):
        # je
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory(b'\x01\x00\x11\x8d\x19'),0,3)
        self.assertEqual(InstructionForm.long_form, instruction_form)
        self.assertEqual(InstructionType.twoOP,instruction_type)
        self.assertEqual(1, opcode_number)
        self.assertEqual([S,S], operands)
        self.assertEqual(1,address)

        # jl
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory(b'\x22\xb2\x14\xe4\x5d'),0,3)
        self.assertEqual(InstructionForm.long_form, instruction_form)
        self.assertEqual(2, opcode_number)
        self.assertEqual([S,V], operands)

        # call
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory(b'\xe0\x3f\x16\x34\x00'),0,3)
        self.assertEqual(InstructionForm.variable_form, instruction_form)
        self.assertEqual(InstructionType.varOP,instruction_type)
        self.assertEqual(0, opcode_number)
        self.assertEqual([L], operands)
        self.assertEqual(2,address)

        # call_1n
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory([0x8f,0x01,0x56]),0,5)
        self.assertEqual(InstructionForm.short_form, instruction_form)
        self.assertEqual(InstructionType.oneOP,instruction_type)
        self.assertEqual(15, opcode_number)
        self.assertEqual([L], operands)

        # mul
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory(b'\xd6\x2f\x03\xe8\x02\x00'),0,3)
        self.assertEqual(InstructionForm.variable_form, instruction_form)
        self.assertEqual(InstructionType.twoOP,instruction_type)
        self.assertEqual(22, opcode_number)
        self.assertEqual([L,V], operands)

        # new_line
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(Memory([0xbb]),0,3)
        self.assertEqual(InstructionType.zeroOP,instruction_type)
        self.assertEqual(11, opcode_number)
        self.assertEqual([], operands)

    def test_extended_form(self):
        memory = Memory(b'\xbe\x02\x5f\x01\x03\x10')
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(memory,0,5)
        self.assertEqual(InstructionForm.extended_form, instruction_form)
        self.assertEqual(InstructionType.extOP,instruction_type)
        self.assertEqual(2, opcode_number)
        self.assertEqual([S,S], operands)

        # Before version 5, 0xbe is a 0OP
        address,instruction_form, instruction_type,  opcode_number,operands = extract_opcode(memory,0,4)
        self.assertEqual(InstructionType.zeroOP,instruction_type)
        self.assertEqual(14, opcode_number)

    def test_double_variable(self):
        mem = create_instruction(InstructionType.varOP,12,[(L,0x100)] + [(S,i) for i in range(1,6)],store_to=0)
        instruction = read_instruction(Memory(mem),0,5,None)
        self.assertEqual('call_vs2',instruction.name)
        self.assertEqual([(L,0x100),(S,1),(S,2),(S,3),(S,4),(S,5)],instruction.operands)
        self.assertEqual(0,instruction.store_to)
        self.assertEqual(len(mem),instruction.next_address)

    def test_process_operands(self):
        address,operands = process_operands([L,S,V],Memory(b'\x12\x34\x56\x78'),0)
        self.assertEqual(4,address)
        self.assertEqual([(L,0x1234),(S,0x56),(V,0x78)],operands)

    def test_extract_branch_offset(self):
        self.assertEqual((1,5,True),extract_branch_offset(Memory([0xc5]),0))
        self.assertEqual((1,0,False),extract_branch_offset(Memory([0x40]),0))
        self.assertEqual((2,-1,False),extract_branch_offset(Memory([0x3f,0xff]),0))
        self.assertEqual((2,0x100,True),extract_branch_offset(Memory([0x81,0x00]),0))

    def test_format_description(self):
        mem = create_instruction(InstructionType.twoOP,20,[(S,18),(V,0)],store_to=200)
        self.assertEqual('2OP:add 18 sp -> 200',str(read_instruction(Memory(mem),0,3,None)))

        mem = create_instruction(InstructionType.twoOP,1,[(V,202),(S,2)],branch_to=0,branch_if_true=False)
        self.assertEqual('2OP:je var202 2 ?!rfalse',str(read_instruction(Memory(mem),0,3,None)))

        mem = create_instruction(InstructionType.oneOP,0,[(S,0)],branch_to=10)
        self.assertEqual('1OP:jz 0 ?000b',str(read_instruction(Memory(mem),0,3,None)))

    def test_literal_string(self):
        ztext = ZText(3)
        mem = print_text(ztext,'Hi there')
        instruction = read_instruction(Memory(mem),0,3,ztext)
        self.assertEqual('Hi there',instruction.literal_string)
        self.assertEqual(len(mem),instruction.next_address)

    def test_save_result_address(self):
        mem = create_instruction(InstructionType.zeroOP,5,[],branch_to=3)
        instruction = read_instruction(Memory(mem),0,3,None)
        self.assertEqual(1,instruction.result_address)
        self.assertTrue(instruction.has_branch)

        mem = create_instruction(InstructionType.zeroOP,5,[],store_to=0x10)
        instruction = read_instruction(Memory(mem),0,4,None)
        self.assertEqual(1,instruction.result_address)
        self.assertTrue(instruction.has_store)

    def test_unknown_opcode(self):
        with self.assertRaises(InstructionException) as cm:
            read_instruction(Memory([0xbe]),0,3,None)
        self.assertFalse(cm.exception.recoverable)
        self.assertEqual(0,cm.exception.pc)

    def test_version_specific_opcodes(self):
        # not in version 4, call_1n in 5
        self.assertEqual('not',read_instruction(Memory([0x8f,0x01,0x56,0x10]),0,4,None).name)
        self.assertEqual('call_1n',read_instruction(Memory([0x8f,0x01,0x56]),0,5,None).name)
        self.assertRaises(InstructionException,read_instruction,Memory([0xda,0x1f,0x00]),0,3,None)

class ArithmeticTests(TestStoryMixin,unittest.TestCase):
    def test_add_overflow(self):
        self.code(op(InstructionType.twoOP,20,(L,32767),(S,1),store_to=0x10),QUIT)
        self.run_story()
        self.assertHalted()
        self.assertEqual(0x8000,self.global_var(0))
        self.assertEqual(-32768,convert_to_signed(self.global_var(0)))

    def test_signed_math(self):
        self.code(op(InstructionType.twoOP,22,(L,300),(L,300),store_to=0x10),
                  op(InstructionType.twoOP,23,(L,-7),(S,2),store_to=0x11),
                  op(InstructionType.twoOP,24,(L,-7),(S,2),store_to=0x12),
                  op(InstructionType.twoOP,21,(S,1),(S,3),store_to=0x13),
                  QUIT)
        self.run_story()
        self.assertEqual(90000 & 0xFFFF,self.global_var(0))
        self.assertEqual(-3,convert_to_signed(self.global_var(1)))
        self.assertEqual(-1,convert_to_signed(self.global_var(2)))
        self.assertEqual(0xFFFE,self.global_var(3))

    def divide_by_zero(self,policy,divisions=1):
        self.builder.set_global(0,0x1234)
        for i in range(0,divisions):
            self.code(op(InstructionType.twoOP,23,(S,1),(S,0),store_to=0x10))
        self.code(store_global(1,1),QUIT)
        return self.run_story(policy=policy)

    def test_divide_by_zero_ignored(self):
        zmachine = self.divide_by_zero(ErrorPolicy.IGNORE)
        self.assertHalted()
        self.assertEqual(None,zmachine.fault)
        self.assertEqual(0x1234,self.global_var(0))
        self.assertEqual(1,self.global_var(1))
        self.assertEqual([],self.reports)

    def test_divide_by_zero_abort(self):
        zmachine = self.divide_by_zero(ErrorPolicy.ABORT)
        self.assertHalted()
        self.assertIsInstance(zmachine.fault,ZArithmeticException)
        self.assertEqual(CODE,zmachine.fault.pc)
        self.assertEqual(0,self.global_var(1))

    def test_divide_by_zero_warn_once(self):
        zmachine = self.divide_by_zero(ErrorPolicy.CONTINUE_WARN_ONCE,divisions=2)
        self.assertEqual(1,len(self.reports))
        self.assertEqual(2,zmachine.error_classifier.fault_count)
        self.assertEqual(1,self.global_var(1))

    def test_divide_by_zero_warn_always(self):
        self.divide_by_zero(ErrorPolicy.CONTINUE_WARN_ALWAYS,divisions=2)
        self.assertEqual(2,len(self.reports))
        self.assertEqual(1,self.global_var(1))

    def test_random(self):
        self.code(op(InstructionType.varOP,7,(L,-10),store_to=0x10),
                  op(InstructionType.varOP,7,(S,10),store_to=0x11),
                  op(InstructionType.varOP,7,(S,10),store_to=0x12),
                  QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(1,self.global_var(1))
        self.assertEqual(2,self.global_var(2))

class ShiftTests(TestStoryMixin,unittest.TestCase):
    version = 5

    def test_shifts(self):
        self.code(op(InstructionType.extOP,2,(S,1),(S,3),store_to=0x10),
                  op(InstructionType.extOP,2,(L,0x8000),(L,-1),store_to=0x11),
                  op(InstructionType.extOP,3,(L,-16),(L,-2),store_to=0x12),
                  QUIT)
        self.run_story()
        self.assertEqual(8,self.global_var(0))
        self.assertEqual(0x4000,self.global_var(1))
        self.assertEqual(0xFFFC,self.global_var(2))

    def test_out_of_range(self):
        self.builder.set_global(0,0x1234)
        self.builder.set_global(1,0x1234)
        self.code(op(InstructionType.extOP,2,(S,1),(S,20),store_to=0x10),
                  op(InstructionType.extOP,3,(L,-1),(L,-20),store_to=0x11),
                  QUIT)
        self.run_story(policy=ErrorPolicy.IGNORE)
        self.assertHalted()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(0xFFFF,self.global_var(1))

class RoutineTests(TestStoryMixin,unittest.TestCase):
    def test_call_and_return(self):
        routine = self.builder.add_routine(op(InstructionType.twoOP,20,(V,1),(V,2),store_to=0) +
                                           op(InstructionType.zeroOP,8),local_values=(0,3))
        self.code(op(InstructionType.varOP,0,(L,routine),(S,7),store_to=0x10),QUIT)
        self.run_story()
        self.assertHalted()
        self.assertEqual(10,self.global_var(0))
        self.assertEqual(1,len(self.zmachine.call_stack))

    def test_call_zero(self):
        self.builder.set_global(0,0x1234)
        self.code(op(InstructionType.varOP,0,(S,0),store_to=0x10),QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))

    def test_branch(self):
        # jz 0 skips over the store to global 0
        self.code(op(InstructionType.oneOP,0,(S,0),branch_to=5),store_global(0,1),store_global(1,1),QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(1,self.global_var(1))

    def test_branch_return(self):
        routine = self.builder.add_routine(op(InstructionType.twoOP,1,(S,5),(S,5),branch_to=1) +
                                           op(InstructionType.oneOP,11,(S,9)))
        self.code(op(InstructionType.varOP,0,(L,routine),store_to=0x10),QUIT)
        self.run_story()
        self.assertEqual(1,self.global_var(0))

    def test_signed_comparison(self):
        self.code(op(InstructionType.twoOP,2,(L,-1),(S,1),branch_to=5),store_global(0,1),QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))

    def test_operand_count(self):
        self.builder.set_global(0,0x1234)
        self.code(op(InstructionType.varOP,0,store_to=0x10),store_global(1,1),QUIT)
        self.run_story(policy=ErrorPolicy.CONTINUE_WARN_ALWAYS)
        self.assertEqual(0x1234,self.global_var(0))
        self.assertEqual(1,self.global_var(1))
        self.assertIsInstance(self.reports[0],InstructionException)

    def test_pull_empty_stack(self):
        self.code(op(InstructionType.varOP,9,(S,0x10)),store_global(1,1),QUIT)
        self.run_story(policy=ErrorPolicy.CONTINUE_WARN_ALWAYS)
        self.assertEqual(1,self.global_var(1))
        self.assertIsInstance(self.reports[0],StackException)

    def test_return_from_main(self):
        self.code(RTRUE,QUIT)
        self.run_story(policy=ErrorPolicy.ABORT)
        self.assertIsInstance(self.zmachine.fault,StackException)

    def test_write_outside_dynamic(self):
        self.code(op(InstructionType.varOP,1,(L,CODE),(S,0),(S,1)),store_global(1,1),QUIT)
        self.run_story(policy=ErrorPolicy.CONTINUE_WARN_ALWAYS)
        self.assertEqual(1,self.global_var(1))
        self.assertIsInstance(self.reports[0],MemoryAccessException)

    def test_unknown_opcode_is_fatal(self):
        self.code(bytearray([0xbe]),QUIT)
        zmachine = self.run_story(policy=ErrorPolicy.IGNORE)
        self.assertHalted()
        self.assertIsInstance(zmachine.fault,InstructionException)
        self.assertFalse(zmachine.fault.recoverable)
        self.assertEqual(CODE,zmachine.fault.pc)

    def test_step_before_reset(self):
        zmachine = Interpreter(Story(self.builder.build()),OutputStreams(StringIOScreen(io.StringIO())),
                               InputStreams(InputStream()))
        self.assertRaises(RuntimeError,zmachine.step)

class CatchTests(TestStoryMixin,unittest.TestCase):
    version = 5

    def test_catch_throw(self):
        thrower = self.builder.add_routine(op(InstructionType.twoOP,28,(S,42),(V,1)),local_values=(0,))
        catcher = self.builder.add_routine(op(InstructionType.zeroOP,9,store_to=1) +
                                           op(InstructionType.varOP,25,(L,thrower),(V,1)) +
                                           op(InstructionType.oneOP,11,(S,5)),local_values=(0,))
        self.code(op(InstructionType.varOP,0,(L,catcher),store_to=0x10),QUIT)
        self.run_story()
        self.assertHalted()
        self.assertEqual(None,self.zmachine.fault)
        self.assertEqual(42,self.global_var(0))
        self.assertEqual(1,len(self.zmachine.call_stack))

    def test_check_arg_count(self):
        routine = self.builder.add_routine(op(InstructionType.varOP,31,(S,2),branch_to=1) + RFALSE,
                                           local_values=(0,0))
        self.code(op(InstructionType.varOP,0,(L,routine),(S,1),store_to=0x10),
                  op(InstructionType.varOP,0,(L,routine),(S,1),(S,2),store_to=0x11),
                  QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(1,self.global_var(1))

class ObjectInstructionTests(TestStoryMixin,unittest.TestCase):
    def test_tree(self):
        self.code(op(InstructionType.twoOP,14,(S,3),(S,2)),
                  op(InstructionType.oneOP,3,(S,3),store_to=0x10),
                  op(InstructionType.oneOP,2,(S,2),store_to=0x11,branch_to=2),
                  op(InstructionType.oneOP,1,(S,2),store_to=0x12,branch_to=2),
                  QUIT)
        self.run_story()
        self.assertEqual(2,self.global_var(0))
        self.assertEqual(3,self.global_var(1))
        self.assertEqual(0,self.global_var(2))

    def test_properties(self):
        self.code(op(InstructionType.twoOP,17,(S,1),(S,5),store_to=0x10),
                  op(InstructionType.varOP,3,(S,1),(S,5),(S,99)),
                  op(InstructionType.twoOP,17,(S,1),(S,5),store_to=0x11),
                  op(InstructionType.twoOP,17,(S,1),(S,4),store_to=0x12),
                  op(InstructionType.twoOP,17,(S,3),(S,6),store_to=0x13),
                  QUIT)
        self.run_story()
        self.assertEqual(10,self.global_var(0))
        self.assertEqual(99,self.global_var(1))
        self.assertEqual(7,self.global_var(2))
        self.assertEqual(0,self.global_var(3))

    def test_attributes(self):
        self.code(op(InstructionType.twoOP,10,(S,1),(S,1),branch_to=5),store_global(0,1),
                  op(InstructionType.twoOP,11,(S,2),(S,4)),
                  op(InstructionType.twoOP,12,(S,1),(S,1)),
                  QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))
        self.assertTrue(self.zmachine.object_table.attribute(2,4))
        self.assertFalse(self.zmachine.object_table.attribute(1,1))

    def test_print_obj(self):
        self.code(op(InstructionType.oneOP,10,(S,2)),QUIT)
        self.run_story()
        self.assertEqual('lamp',self.output.getvalue())

    def test_invalid_object(self):
        self.builder.set_global(0,0x1234)
        self.code(op(InstructionType.oneOP,3,(S,0),store_to=0x10),QUIT)
        self.run_story(policy=ErrorPolicy.CONTINUE_WARN_ALWAYS)
        self.assertHalted()
        self.assertEqual(None,self.zmachine.fault)
        self.assertEqual(0x1234,self.global_var(0))
        self.assertIsInstance(self.reports[0],ObjectException)

class OutputTests(TestStoryMixin,unittest.TestCase):
    def test_print(self):
        self.code(print_text(self.builder.ztext,'Hello world'),NEW_LINE,
                  op(InstructionType.varOP,6,(L,-5)),
                  op(InstructionType.varOP,5,(S,ord('!'))),
                  QUIT)
        self.run_story()
        self.assertEqual('Hello world\n-5!',self.output.getvalue())

    def test_memory_stream(self):
        self.code(op(InstructionType.varOP,19,(S,3),(L,TEXT_BUFFER)),
                  print_text(self.builder.ztext,'abc'),
                  op(InstructionType.varOP,19,(L,-3)),
                  print_text(self.builder.ztext,'x'),
                  QUIT)
        self.run_story()
        memory = self.zmachine.memory
        self.assertEqual(3,memory.word(TEXT_BUFFER))
        self.assertEqual(bytearray(b'abc'),memory[TEXT_BUFFER+2:TEXT_BUFFER+5])
        self.assertEqual('x',self.output.getvalue())

    def test_show_status(self):
        self.builder.set_global(0,1)
        self.builder.set_global(1,0xFFFF)
        self.builder.set_global(2,7)
        self.code(op(InstructionType.zeroOP,12),QUIT)
        self.run_story()
        self.assertEqual([('room',True,0,0,-1,7)],self.screen.statuses)

    def test_verify(self):
        self.code(op(InstructionType.zeroOP,13,branch_to=5),store_global(0,1),store_global(1,1),QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(1,self.global_var(1))

    def test_sound_routine(self):
        routine = self.builder.add_routine(store_global(1,1) + RTRUE)
        self.code(op(InstructionType.varOP,21,(S,3),(S,2),(S,8),(L,routine)),store_global(0,1),QUIT)
        sound = TestSound()
        self.run_story(sound=sound)
        self.assertHalted()
        self.assertEqual([(3,1,8)],sound.played)
        self.assertEqual(1,self.global_var(0))
        self.assertEqual(1,self.global_var(1))

    def test_sound_repeats_from_blorb(self):
        self.code(op(InstructionType.varOP,21,(S,3),(S,2),(S,8)),QUIT)
        sound = TestSound()
        self.load(sound=sound,data=make_blorb(self.builder.build(),loops={3: 4}))
        self.zmachine.run()
        self.assertEqual([(3,4,8)],sound.played)

class ReadTests(TestStoryMixin,unittest.TestCase):
    def test_read_line(self):
        self.builder.set_global(0,1)
        self.builder.set_global(1,5)
        self.builder.set_global(2,7)
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER)),QUIT)
        zmachine = self.load()
        zmachine.run()
        self.assertEqual(Interpreter.WAITING_FOR_LINE_STATE,zmachine.state)
        self.assertTrue(zmachine.awaiting_input)
        self.assertEqual(CODE,zmachine.pc)
        self.assertEqual([('room',True,0,0,5,7)],self.screen.statuses)

        request = zmachine.pending_input
        self.assertEqual(InputRequest.LINE,request.kind)
        self.assertEqual(19,request.max_length)

        zmachine.complete_input(request,'Take Lamp')
        self.assertEqual(Interpreter.RUNNING_STATE,zmachine.state)
        memory = zmachine.memory
        self.assertEqual(bytearray(b'take lamp\x00'),memory[TEXT_BUFFER+1:TEXT_BUFFER+11])
        self.assertEqual(2,memory[PARSE_BUFFER+1])
        self.assertEqual(zmachine.dictionary.lookup('take'),memory.word(PARSE_BUFFER+2))
        self.assertEqual(4,memory[PARSE_BUFFER+4])
        self.assertEqual(1,memory[PARSE_BUFFER+5])
        self.assertEqual(zmachine.dictionary.lookup('lamp'),memory.word(PARSE_BUFFER+6))
        self.assertEqual(6,memory[PARSE_BUFFER+9])

        zmachine.run()
        self.assertHalted()

    def test_truncated(self):
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER)),QUIT)
        zmachine = self.load()
        zmachine.run()
        zmachine.complete_input(zmachine.pending_input,'x' * 30)
        self.assertEqual(bytearray(b'x' * 19 + b'\x00'),zmachine.memory[TEXT_BUFFER+1:TEXT_BUFFER+21])

    def test_stale_request(self):
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER)),QUIT)
        zmachine = self.load()
        zmachine.run()
        request = zmachine.pending_input
        self.assertRaises(ValueError,zmachine.complete_input,InputRequest(InputRequest.LINE,request.instruction),'look')
        zmachine.complete_input(request,'look')
        self.assertRaises(ValueError,zmachine.complete_input,request,'look')

    def test_command_file(self):
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER)),QUIT)
        commands = FileInputStream()
        commands.commands = ['look']
        zmachine = self.load()
        zmachine.input_streams = InputStreams(InputStream(),commands)
        zmachine.input_streams.select_stream(InputStreams.FILE)
        zmachine.run()
        self.assertTrue(zmachine.awaiting_input)
        zmachine.step()
        self.assertHalted()
        self.assertEqual(bytearray(b'look'),zmachine.memory[TEXT_BUFFER+1:TEXT_BUFFER+5])

        # Out of commands falls back to the keyboard
        self.assertEqual(None,zmachine.input_streams.readline())
        self.assertTrue(commands.exhausted)
        self.assertTrue(zmachine.input_streams.active_stream is zmachine.input_streams.keyboard_stream)

class TimedReadTests(TestStoryMixin,unittest.TestCase):
    version = 5

    def start_read(self,routine_code):
        routine = self.builder.add_routine(routine_code)
        self.builder.set_global(0,0x1234)
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER),(S,10),(L,routine),store_to=0x10),QUIT)
        zmachine = self.load()
        zmachine.run()
        request = zmachine.pending_input
        self.assertEqual(10,request.time)
        self.assertEqual(routine,request.routine)
        self.assertEqual(20,request.max_length)
        return zmachine,request

    def test_read(self):
        zmachine,request = self.start_read(RTRUE)
        zmachine.complete_input(request,'take box')
        zmachine.run()
        self.assertHalted()
        self.assertEqual(13,self.global_var(0))
        memory = zmachine.memory
        self.assertEqual(8,memory[TEXT_BUFFER+1])
        self.assertEqual(bytearray(b'take box'),memory[TEXT_BUFFER+2:TEXT_BUFFER+10])
        self.assertEqual(2,memory[PARSE_BUFFER+1])
        self.assertEqual(2,memory[PARSE_BUFFER+5])
        self.assertEqual(7,memory[PARSE_BUFFER+9])

    def test_interrupt_ends_read(self):
        zmachine,request = self.start_read(RTRUE)
        zmachine.complete_input(request,'lam',timed_out=True)
        self.assertEqual(Interpreter.RUNNING_STATE,zmachine.state)
        zmachine.run()
        self.assertHalted()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(3,zmachine.memory[TEXT_BUFFER+1])
        self.assertEqual(bytearray(b'lam'),zmachine.memory[TEXT_BUFFER+2:TEXT_BUFFER+5])

    def test_interrupt_continues_read(self):
        zmachine,request = self.start_read(RFALSE)
        zmachine.complete_input(request,'lam',timed_out=True)
        zmachine.run()
        self.assertEqual(Interpreter.WAITING_FOR_LINE_STATE,zmachine.state)
        self.assertTrue(zmachine.pending_input is request)
        self.assertEqual('lam',request.initial_text)
        self.assertEqual(CODE,zmachine.pc)
        self.assertEqual(1,len(zmachine.call_stack))

        zmachine.complete_input(request,'lamp')
        zmachine.run()
        self.assertHalted()
        self.assertEqual(13,self.global_var(0))

    def test_interrupt_reads_char(self):
        read_char = op(InstructionType.varOP,22,(S,1),store_to=0)
        zmachine,request = self.start_read(read_char + RTRUE)
        zmachine.complete_input(request,'la',timed_out=True)
        zmachine.run()
        self.assertEqual(Interpreter.WAITING_FOR_CHAR_STATE,zmachine.state)
        inner = zmachine.pending_input
        self.assertEqual(InputRequest.CHAR,inner.kind)
        self.assertTrue(inner is not request)
        self.assertEqual(2,len(zmachine.call_stack))

        zmachine.complete_input(inner,'x')
        zmachine.run()
        self.assertHalted()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(2,zmachine.memory[TEXT_BUFFER+1])
        self.assertEqual(bytearray(b'la'),zmachine.memory[TEXT_BUFFER+2:TEXT_BUFFER+4])
        self.assertEqual(1,len(zmachine.call_stack))

    def test_initial_text(self):
        self.code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(S,0),store_to=0x10),QUIT)
        self.builder.memory[TEXT_BUFFER+1] = 2
        self.builder.memory[TEXT_BUFFER+2] = ord('g')
        self.builder.memory[TEXT_BUFFER+3] = ord('o')
        zmachine = self.load()
        zmachine.run()
        self.assertEqual('go',zmachine.pending_input.initial_text)

    def test_read_char(self):
        self.code(op(InstructionType.varOP,22,(S,1),store_to=0x10),QUIT)
        zmachine = self.load()
        zmachine.run()
        self.assertEqual(Interpreter.WAITING_FOR_CHAR_STATE,zmachine.state)
        self.assertEqual(InputRequest.CHAR,zmachine.pending_input.kind)
        zmachine.complete_input(zmachine.pending_input,'x')
        zmachine.run()
        self.assertHalted()
        self.assertEqual(ord('x'),self.global_var(0))

class SaveRestoreTests(TestStoryMixin,unittest.TestCase):
    def test_save_restore(self):
        a0,a1,a2,a3,a4,a5 = self.code(store_global(0,5),
                                      op(InstructionType.zeroOP,5,branch_to=3),
                                      QUIT,
                                      store_global(0,9),
                                      op(InstructionType.zeroOP,6,branch_to=2),
                                      QUIT)
        zmachine = self.load()
        zmachine.run(max_steps=2)
        self.assertEqual(a3,zmachine.pc)
        self.assertTrue(self.save_handler.data)

        state = quetzal.decode(self.save_handler.data,zmachine.story.original_dynamic)
        self.assertEqual(a1+1,state.pc)
        self.assertEqual(1,state.release)
        self.assertEqual(b'261018',state.serial)

        zmachine.run(max_steps=2)
        self.assertEqual(Interpreter.RUNNING_STATE,zmachine.state)
        self.assertEqual(5,self.global_var(0))
        self.assertEqual(a3,zmachine.pc)
        self.assertEqual(1,len(zmachine.call_stack))

    def test_restore_nothing(self):
        self.code(op(InstructionType.zeroOP,6,branch_to=5,branch_if_true=False),store_global(0,1),store_global(1,1),QUIT)
        self.run_story()
        self.assertHalted()
        self.assertEqual(0,self.global_var(0))
        self.assertEqual(1,self.global_var(1))

    def test_restore_wrong_story(self):
        zmachine = self.load()
        state = quetzal.SaveState(99,zmachine.header.serial,zmachine.header.checksum,CODE,
                                  zmachine.memory.dynamic_bytes(),zmachine.call_stack.snapshot())
        data = quetzal.encode(state,zmachine.story.original_dynamic)
        self.assertRaises(SaveRestoreException,zmachine.load_save,data)

        self.save_handler.data = data
        zmachine.memory[0x40] = 1
        self.assertFalse(zmachine.restore())
        self.assertEqual(1,zmachine.memory[0x40])

    def test_restore_bad_pc(self):
        self.code(QUIT)
        zmachine = self.load()
        dynamic = bytearray(zmachine.memory.dynamic_bytes())
        dynamic[0x40] = 0x77
        state = quetzal.SaveState(zmachine.header.release_number,zmachine.header.serial,zmachine.header.checksum,
                                  0xFFFFF,dynamic,zmachine.call_stack.snapshot())
        data = quetzal.encode(state,zmachine.story.original_dynamic)
        self.assertRaises(SaveRestoreException,zmachine.load_save,data)

        self.save_handler.data = data
        self.assertFalse(zmachine.restore())
        self.assertEqual(0,zmachine.memory[0x40])
        self.assertEqual(CODE,zmachine.pc)

    def test_restart(self):
        self.code(store_global(0,5),QUIT)
        zmachine = self.run_story()
        self.assertEqual(5,self.global_var(0))
        zmachine.header.flag_transcript = True
        zmachine.restart()
        self.assertEqual(0,self.global_var(0))
        self.assertTrue(zmachine.header.flag_transcript)
        self.assertEqual(CODE,zmachine.pc)
        self.assertEqual(Interpreter.RUNNING_STATE,zmachine.state)

class StoreSaveRestoreTests(TestStoryMixin,unittest.TestCase):
    version = 5

    def test_save_restore(self):
        a0,a1,a2,a3,a4 = self.code(store_global(0,5),
                                   op(InstructionType.extOP,0,store_to=0x11),
                                   store_global(0,9),
                                   op(InstructionType.extOP,1,store_to=0x12),
                                   QUIT)
        zmachine = self.load()
        zmachine.run(max_steps=2)
        self.assertEqual(1,self.global_var(1))
        zmachine.run(max_steps=2)
        self.assertEqual(5,self.global_var(0))
        self.assertEqual(2,self.global_var(1))
        self.assertEqual(0,self.global_var(2))
        self.assertEqual(a2,zmachine.pc)

    def test_save_restore_in_routine(self):
        routine = self.builder.add_routine(op(InstructionType.varOP,8,(S,0x55)) +
                                           op(InstructionType.twoOP,13,(S,2),(S,9)) +
                                           op(InstructionType.extOP,0,store_to=0x10) +
                                           RTRUE,
                                           local_values=(0,0))
        self.code(store_global(1,4),
                  op(InstructionType.varOP,0,(L,routine),(S,7),store_to=0x12),
                  QUIT)
        zmachine = self.load()
        zmachine.run(max_steps=5)
        self.assertEqual(1,self.global_var(0))
        saved_pc = zmachine.pc
        state = quetzal.decode(self.save_handler.data,zmachine.story.original_dynamic)
        self.assertEqual(2,len(state.frames))
        self.assertEqual([7,9],state.frames[-1].local_variables)
        self.assertEqual([0x55],state.frames[-1].stack)

        # Scramble everything the save covers
        zmachine.call_stack.set_var(1,100)
        zmachine.call_stack.set_var(2,200)
        zmachine.call_stack.set_var(0,0x66)
        zmachine.call_stack.set_nth_global(1,44)
        zmachine.pc = CODE

        self.assertTrue(zmachine.restore())
        self.assertEqual(saved_pc,zmachine.pc)
        self.assertEqual(state.frames,zmachine.call_stack.frames)
        self.assertEqual(4,self.global_var(1))
        self.assertEqual(2,self.global_var(0))
        expected = bytearray(state.dynamic_memory)
        expected[0x40:0x42] = b'\x00\x02'
        self.assertEqual(bytes(expected),bytes(zmachine.memory.dynamic_bytes()))

        zmachine.run()
        self.assertHalted()
        self.assertEqual(1,self.global_var(2))

    def test_restore_missing_local(self):
        a0, = self.code(op(InstructionType.extOP,0,store_to=0x03))
        self.code(QUIT)
        zmachine = self.load()
        instruction = zmachine.instruction_at(a0)
        dynamic = bytearray(zmachine.memory.dynamic_bytes())
        dynamic[0x40] = 0x77
        state = quetzal.SaveState(zmachine.header.release_number,zmachine.header.serial,zmachine.header.checksum,
                                  instruction.result_address,dynamic,zmachine.call_stack.snapshot())
        self.save_handler.data = quetzal.encode(state,zmachine.story.original_dynamic)
        self.assertFalse(zmachine.restore())
        self.assertEqual(0,zmachine.memory[0x40])
        self.assertEqual(1,len(zmachine.call_stack))

    def test_undo(self):
        a0,a1,a2,a3,a4 = self.code(store_global(0,5),
                                   op(InstructionType.extOP,9,store_to=0x11),
                                   store_global(0,9),
                                   op(InstructionType.extOP,10,store_to=0x12),
                                   QUIT)
        zmachine = self.load()
        zmachine.run(max_steps=2)
        self.assertEqual(1,self.global_var(1))
        zmachine.run(max_steps=2)
        self.assertEqual(5,self.global_var(0))
        self.assertEqual(2,self.global_var(1))
        self.assertEqual(a2,zmachine.pc)
        self.assertEqual([],zmachine.undo_states)

    def test_undo_nothing(self):
        self.builder.set_global(2,0x1234)
        self.code(op(InstructionType.extOP,10,store_to=0x12),QUIT)
        self.run_story()
        self.assertEqual(0,self.global_var(2))

    def test_undo_limit(self):
        self.code(QUIT)
        zmachine = self.load()
        for i in range(0,MAX_UNDO_STATES+2):
            zmachine.save_undo(zmachine.current_instruction())
        self.assertEqual(MAX_UNDO_STATES,len(zmachine.undo_states))

class StoryTests(TestStoryMixin,unittest.TestCase):
    def test_blorb(self):
        self.code(print_text(self.builder.ztext,'boxed'),QUIT)
        self.run_story(data=make_blorb(self.builder.build()))
        self.assertEqual('boxed',self.output.getvalue())
        self.assertTrue(self.zmachine.story.blorb)

    def test_bad_blorb(self):
        self.assertRaises(ResourceException,load_story,make_blorb(self.builder.build(),chunk_id='GLUL'))

    def test_blorb_without_story(self):
        try:
            load_story(make_blorb(self.builder.build(),exec_count=0))
            self.fail('Loaded a blorb with no executable')
        except ResourceException as e:
            self.assertEqual(ErrorKind.RESOURCE,e.kind)

    def test_too_short(self):
        story = Story(bytes([3]) + bytes(20))
        self.assertRaises(StoryFileException,story.reset)

    def test_version_6(self):
        data = bytearray(self.builder.build())
        data[0] = 6
        self.assertRaises(StoryFileException,Story(data).reset)

    def test_checksum(self):
        story = Story(self.builder.build())
        story.reset()
        self.assertEqual(story.header.checksum,story.calculate_checksum())

class ConsoleTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def write_story(self,builder):
        path = os.path.join(self.tmpdir,'test.z3')
        with open(path,'wb') as f:
            f.write(builder.build())
        return path

    def test_save_handler(self):
        names = ['game']
        save_handler = FileSaveHandler(self.tmpdir,lambda message: names.pop())
        self.assertTrue(save_handler.save(b'data'))
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir,'game.qzl')))

        restore_handler = FileRestoreHandler(self.tmpdir,lambda message: 'game.qzl')
        self.assertEqual(b'data',restore_handler.restore())
        restore_handler = FileRestoreHandler(self.tmpdir,lambda message: 'missing')
        self.assertEqual(None,restore_handler.restore())

    def test_save_handler_bad_path(self):
        self.assertRaises(ConfigException,FileSaveHandler,os.path.join(self.tmpdir,'nope'),None)

    def test_stdout_status(self):
        out = io.StringIO()
        screen = STDOUTScreen(out,columns=40)
        screen.show_status('West of House',score=3,turns=10)
        self.assertEqual('[%s Score: 3  Turns: 10]\n' % 'West of House'.ljust(20),out.getvalue())

    def test_terp(self):
        builder = sample_story(3)
        builder.add_code(print_text(builder.ztext,'Hi'))
        builder.add_code(QUIT)
        path = self.write_story(builder)
        with mock.patch('sys.stdout',new_callable=io.StringIO) as out:
            result = terp.main(path,'--config',os.path.join(self.tmpdir,'missing.yaml'),'--save_path',self.tmpdir)
        self.assertEqual(0,result)
        self.assertTrue(out.getvalue().startswith('Hi'))

    def test_terp_commands(self):
        builder = sample_story(3)
        builder.add_code(op(InstructionType.varOP,4,(L,TEXT_BUFFER),(L,PARSE_BUFFER)))
        builder.add_code(QUIT)
        path = self.write_story(builder)
        commands_path = os.path.join(self.tmpdir,'commands.txt')
        with open(commands_path,'w') as f:
            f.write('take lamp\n')
        with mock.patch('sys.stdout',new_callable=io.StringIO) as out:
            result = terp.main(path,'--config',os.path.join(self.tmpdir,'missing.yaml'),
                               '--save_path',self.tmpdir,'--commands_path',commands_path)
        self.assertEqual(0,result)
        self.assertIn('take lamp',out.getvalue())

    def test_terp_seed(self):
        path = self.write_story(sample_story(3))
        zmachine = terp.MainLoop(path,Config(),seed='5',save_path=self.tmpdir).build()
        self.assertTrue(zmachine.rng.predictable)
        self.assertEqual([1,2,3,4,5,1],[zmachine.rng.randint(10) for i in range(0,6)])

        zmachine = terp.MainLoop(path,Config(),seed='5000',save_path=self.tmpdir).build()
        self.assertFalse(zmachine.rng.predictable)
        self.assertEqual(5000,zmachine.rng.seed)

    def test_terp_fault(self):
        builder = sample_story(3)
        builder.add_code(bytearray([0xbe]))
        path = self.write_story(builder)
        with mock.patch('sys.stdout',new_callable=io.StringIO) as out:
            result = terp.main(path,'--config',os.path.join(self.tmpdir,'missing.yaml'),'--save_path',self.tmpdir)
        self.assertEqual(1,result)
        self.assertIn('Fatal',out.getvalue())

    def test_dump(self):
        path = self.write_story(sample_story(3))
        with mock.patch('sys.stdout',new_callable=io.StringIO) as out:
            dump.dump(path,dictionary=True,objects=True,resources=True)
        output = out.getvalue()
        self.assertRegex(output,r'Version:\s+3\n')
        self.assertIn('2. lamp parent=1 sibling=3 child=0',output)
        self.assertIn('Not a blorb',output)

if __name__ == '__main__':
    unittest.main()
