""" Tests for zmachine components """

import unittest
import os
import random
import struct
import tempfile

from zmachine.errors import MemoryAccessException,ObjectException,StackException,SaveRestoreException,\
                            ResourceException,StoryFileException,ConfigException,ErrorPolicy,ErrorClassifier,\
                            ZArithmeticException,InstructionException,Recovery
from zmachine.memory import Memory,GameMemory,MemoryRegion,unpack_address
from zmachine.header import Header,VersionConfig
from zmachine.text import ZText,ZTextException
from zmachine.dictionary import Dictionary
from zmachine.objects import ObjectTableManager
from zmachine.rng import RNG
from zmachine.stack import Routine,CallStack
from zmachine.iff import read_form,write_form
from zmachine.config import Config
from zmachine.blorb import Blorb,is_blorb
from zmachine import quetzal

GLOBALS = 0x40
OBJECTS = 0x220
PROPERTIES = 0x2D0
DICTIONARY = 0x340
TEXT_BUFFER = 0x3A0
PARSE_BUFFER = 0x3C0
STATIC = 0x400
CODE = 0x500
ROUTINES = 0x700
SIZE = 0x800

class StoryBuilder(object):
    """ Assembles a small story file in memory. Globals, objects, dictionary and the text/parse
        buffers are in dynamic memory, code starts at CODE in high memory """
    def __init__(self,version=3):
        self.version = version
        self.config = VersionConfig(version)
        self.ztext = ZText(version)
        self.memory = Memory(bytearray(SIZE))
        self.code_address = CODE
        self.routine_address = ROUTINES
        self.property_address = PROPERTIES

        m = self.memory
        m[Header.VERSION] = version
        m.set_word(Header.RELEASE,1)
        m.set_word(Header.HIMEM,CODE)
        m.set_word(Header.MAIN_ROUTINE,CODE)
        m.set_word(Header.DICTIONARY,DICTIONARY)
        m.set_word(Header.OBJECT_TABLE,OBJECTS)
        m.set_word(Header.GLOBAL_VARIABLES,GLOBALS)
        m.set_word(Header.STATIC_MEMORY,STATIC)
        for i,c in enumerate(b'261018'):
            m[Header.SERIAL+i] = c
        m[TEXT_BUFFER] = 20
        m[PARSE_BUFFER] = 4
        self.add_dictionary([])

    def set_global(self,n,value):
        self.memory.set_word(GLOBALS+(n*2),value)

    def add_object(self,number,name='',parent=0,sibling=0,child=0,attributes=(),properties=None):
        m = self.memory
        start = OBJECTS + (2*self.config.property_default_count) + (self.config.object_entry_size*(number-1))
        for attribute in attributes:
            m[start + (attribute//8)] = m[start + (attribute//8)] | (0x80 >> (attribute % 8))
        if self.version < 4:
            m[start+4],m[start+5],m[start+6] = parent,sibling,child
            m.set_word(start+7,self.property_address)
        else:
            m.set_word(start+6,parent)
            m.set_word(start+8,sibling)
            m.set_word(start+10,child)
            m.set_word(start+12,self.property_address)

        address = self.property_address
        name_data = self.ztext.pack(self.ztext.encode(name,0)) if name else b''
        m[address] = len(name_data)//2
        address+=1
        for b in name_data:
            m[address] = b
            address+=1
        properties = properties or {}
        for number in sorted(properties,reverse=True):
            data = properties[number]
            if self.version < 4:
                m[address] = (32*(len(data)-1)) + number
                address+=1
            elif len(data) <= 2:
                m[address] = number | (0x40 if len(data) == 2 else 0)
                address+=1
            else:
                m[address] = 0x80 | number
                m[address+1] = 0x80 | (len(data) & 0x3F)
                address+=2
            for b in data:
                m[address] = b
                address+=1
        m[address] = 0
        self.property_address = address+1

    def add_dictionary(self,words,separators=('.',','),is_sorted=True):
        m = self.memory
        address = DICTIONARY
        m[address] = len(separators)
        address+=1
        for s in separators:
            m[address] = ord(s)
            address+=1
        key_bytes = self.config.dictionary_key_bytes
        m[address] = key_bytes + 3
        address+=1
        keys = sorted([bytes(self.ztext.encrypt(w)) for w in words])
        if not is_sorted:
            keys.reverse()
        m.set_word(address,len(keys) if is_sorted else -len(keys))
        address+=2
        for key in keys:
            for i in range(0,key_bytes+3):
                m[address+i] = key[i] if i < key_bytes else 0
            address+=key_bytes+3

    def add_code(self,data):
        address = self.code_address
        for i,b in enumerate(data):
            self.memory[address+i] = b
        self.code_address += len(data)
        return address

    def add_routine(self,data,local_values=()):
        """ Add a routine after ROUTINES, returning its packed address """
        multiplier = {1:2,2:2,3:2,4:4,5:4,7:4,8:8}[self.version]
        while self.routine_address % multiplier:
            self.routine_address+=1
        address = self.routine_address
        data = bytearray([len(local_values)]) + bytearray(data)
        if self.version < 5:
            header = bytearray([len(local_values)])
            for val in local_values:
                header.extend([val >> 8,val & 0xFF])
            data = header + data[1:]
        for i,b in enumerate(data):
            self.memory[address+i] = b
        self.routine_address += len(data)
        return address // multiplier

    def build(self):
        self.memory.set_word(Header.FILE_LENGTH,SIZE // self.config.file_length_multiplier)
        self.memory.set_word(Header.CHECKSUM,sum(self.memory[0x40:SIZE]) % 65536)
        return bytes(self.memory[0:SIZE])

def sample_story(version=3):
    """ A room containing a lamp and a box, and a three word dictionary """
    builder = StoryBuilder(version)
    builder.add_object(1,'room',child=2,attributes=(1,),properties={5: b'\x00\x0a',4: b'\x07'})
    builder.add_object(2,'lamp',parent=1,sibling=3,properties={5: b'\x00\x01'})
    builder.add_object(3,'box',parent=1)
    builder.add_dictionary(['take','lamp','box'])
    return builder

class MemoryTests(unittest.TestCase):
    def test_from_integers(self):
        mem = Memory([1,2,3])
        self.assertEqual(3, len(mem))
        self.assertEqual(1,mem[0])
        self.assertEqual(2,mem[1])
        self.assertEqual(3,mem[2])
        self.assertEqual(bytearray([1,2]), mem[0:2])

    def test_address(self):
        mem = Memory([0,1])
        self.assertEqual(0x00, mem[0])
        self.assertEqual(0x01,mem[1])
        self.assertEqual(0x01,mem.word(0))

    def test_out_of_bounds(self):
        mem = Memory([0,1])
        self.assertRaises(MemoryAccessException,mem.__getitem__,2)
        self.assertRaises(MemoryAccessException,mem.word,1)

    def test_set_flag(self):
        mem = Memory([0])
        self.assertFalse(mem.flag(0,1))
        mem.set_flag(0,1,1)
        self.assertTrue(mem.flag(0,1))
        mem.set_flag(0,1,0)
        self.assertFalse(mem.flag(0,1))

    def test_set_word(self):
        mem = Memory([0,0])
        mem.set_word(0,0xFFFF)
        self.assertEqual(0xFFFF,mem.word(0))
        mem.set_word(0,0xFF00)
        self.assertEqual(0xFF,mem[0])
        self.assertEqual(0,mem[1])
        mem.set_word(0,0x12345)
        self.assertEqual(0x2345,mem.word(0))

    def test_signed_int(self):
        mem = Memory([0,0])
        mem[1] = 0xFF
        mem[0] = 0x7F
        self.assertEqual(32767, mem.signed_int(0))
        mem[0] = 0xFF
        self.assertEqual(-1, mem.signed_int(0))
        mem.set_signed_int(0,-32768)
        self.assertEqual(0x8000,mem.word(0))
        self.assertRaises(MemoryAccessException,mem.set_signed_int,0,32768)

    def test_unpack_address(self):
        self.assertEqual(0x200,unpack_address(0x100,3))
        self.assertEqual(0x400,unpack_address(0x100,5))
        self.assertEqual(0x400+(0x10*8),unpack_address(0x100,7,0x10))
        self.assertEqual(0x800,unpack_address(0x100,8))

    def test_game_memory_regions(self):
        game_memory = GameMemory(Memory(bytearray(0x30)),0x10,0x20)
        self.assertEqual(MemoryRegion.DYNAMIC,game_memory.region_of(0x0F))
        self.assertEqual(MemoryRegion.STATIC,game_memory.region_of(0x10))
        self.assertEqual(MemoryRegion.HIGH,game_memory.region_of(0x20))
        self.assertRaises(MemoryAccessException,game_memory.region_of,0x30)

    def test_game_memory_writes(self):
        game_memory = GameMemory(Memory(bytearray(0x30)),0x10,0x20)
        game_memory.write_byte(0x0F,0x12)
        self.assertEqual(0x12,game_memory.read_byte(0x0F))
        self.assertRaises(MemoryAccessException,game_memory.write_byte,0x10,1)
        # Straddling the boundary fails without writing either byte
        self.assertRaises(MemoryAccessException,game_memory.write_word,0x0F,0xFFFF)
        self.assertEqual(0x12,game_memory.read_byte(0x0F))
        self.assertEqual(0,game_memory.read_word(0x20))

    def test_replace_dynamic(self):
        game_memory = GameMemory(Memory(bytearray(0x30)),0x10,0x20)
        game_memory.replace_dynamic(bytes(range(0,0x10)))
        self.assertEqual(bytes(range(0,0x10)),game_memory.dynamic_bytes())
        self.assertRaises(MemoryAccessException,game_memory.replace_dynamic,bytes(4))

class HeaderTests(unittest.TestCase):
    def test_fields(self):
        builder = sample_story(5)
        header = Header(Memory(builder.build()))
        self.assertEqual(5,header.version)
        self.assertEqual(1,header.release_number)
        self.assertEqual(CODE,header.main_routine_addr)
        self.assertEqual(DICTIONARY,header.dictionary_address)
        self.assertEqual(OBJECTS,header.object_table_address)
        self.assertEqual(GLOBALS,header.global_variables_address)
        self.assertEqual(STATIC,header.static_memory_address)
        self.assertEqual(b'261018',header.serial)
        self.assertEqual(SIZE,header.file_length())

    def test_version_config(self):
        config = VersionConfig(3)
        self.assertEqual(32,config.attribute_count)
        self.assertEqual(9,config.object_entry_size)
        self.assertEqual(4,config.dictionary_key_bytes)
        config = VersionConfig(8)
        self.assertEqual(48,config.attribute_count)
        self.assertEqual(14,config.object_entry_size)
        self.assertEqual(6,config.dictionary_key_bytes)
        self.assertEqual(8,config.file_length_multiplier)

    def test_unsupported_version(self):
        self.assertRaises(StoryFileException,VersionConfig,6)
        self.assertRaises(StoryFileException,VersionConfig,9)

    def test_too_short(self):
        self.assertRaises(StoryFileException,Header,Memory(bytearray(10)))

    def test_reset(self):
        builder = sample_story(5)
        header = Header(Memory(builder.build()))
        header.reset(screen_lines=40,screen_columns=100,default_colours=(4,5))
        self.assertEqual(40,header[Header.SCREEN_HEIGHT_LINES])
        self.assertEqual(100,header[Header.SCREEN_WIDTH_CHARS])
        self.assertEqual(4,header[Header.DEFAULT_FOREGROUND])
        self.assertEqual(5,header[Header.DEFAULT_BACKGROUND])
        self.assertEqual(0x0101,header.revision_number)

    def test_transcript_flag(self):
        header = Header(Memory(bytearray(0x40)))
        self.assertFalse(header.flag_transcript)
        header.flag_transcript = True
        self.assertTrue(header.flag_transcript)
        self.assertEqual(1,header.flags_2)

class ZTextTests(unittest.TestCase):
    def test_decode(self):
        ztext = ZText(3)
        # "The" with padding
        self.assertEqual('The',ztext.decode(Memory(ztext.pack(ztext.encode('The',0)))))

    def test_encode_round_trip(self):
        for version in (1,2,3,5,8):
            ztext = ZText(version)
            text = 'Hello, World 42!'
            data = ztext.pack(ztext.encode(text,0))
            self.assertEqual(text,ztext.decode(Memory(data)),'Version %d' % version)

    def test_encode_escape(self):
        ztext = ZText(3)
        data = ztext.pack(ztext.encode('a{b',0))
        self.assertEqual('a{b',ztext.decode(Memory(data)))
        self.assertEqual([5,6,3,27],ztext.encode('{',0)[0:4])

    def test_encrypt_length(self):
        self.assertEqual(4,len(ZText(3).encrypt('lantern')))
        self.assertEqual(6,len(ZText(5).encrypt('lantern')))
        # Truncated to six zchars in version 3
        self.assertEqual(ZText(3).encrypt('lanter'),ZText(3).encrypt('lantern'))
        self.assertEqual(ZText(3).encrypt('lamp'),ZText(3).encrypt('LAMP'))

    def test_encode_padding(self):
        ztext = ZText(3)
        self.assertEqual([6,5,5,5,5,5],ztext.encode('a'))
        self.assertEqual([5,5,5],ztext.encode('',0))

    def test_version_one_newline(self):
        ztext = ZText(1)
        self.assertEqual('a\nb',ztext.decode_zchars([6,1,7]))
        # No abbreviations in version 1
        self.assertEqual('0',ZText(1).decode_zchars([3,7]))

    def test_shift_lock(self):
        ztext = ZText(2)
        # 4 locks to A1 until the next lock
        self.assertEqual('ABc',ztext.decode_zchars([4,6,7,5,8]))

    def test_abbreviation(self):
        ztext = ZText(3)
        abbrev = ztext.pack(ztext.encode('the ',0))
        data = bytearray(0x20)
        # Abbreviation table at 0, string at 0x10
        data[0:2] = bytes([0,0x08])
        data[0x10:0x10+len(abbrev)] = abbrev
        memory = Memory(data)
        ztext = ZText(3,memory=memory,abbrev_address=0)
        self.assertEqual('the a',ztext.decode_zchars([1,0,6]))

    def test_nested_abbreviation(self):
        ztext = ZText(3)
        data = bytearray(0x20)
        data[0:2] = bytes([0,0x08])
        data[0x10:0x12] = ztext.pack([1,0,5])
        ztext = ZText(3,memory=Memory(data),abbrev_address=0)
        self.assertRaises(ZTextException,ztext.decode_zchars,[1,0,6])

    def test_zscii(self):
        ztext = ZText(5)
        self.assertEqual('',ztext.zscii_to_unicode(0))
        self.assertEqual('\n',ztext.zscii_to_unicode(13))
        self.assertEqual('a',ztext.zscii_to_unicode(97))
        self.assertEqual('ä',ztext.zscii_to_unicode(155))
        self.assertEqual(155,ztext.unicode_to_zscii('ä'))
        self.assertEqual(None,ztext.unicode_to_zscii('中'))
        self.assertEqual(ord('?'),ztext.to_zscii('中'))

    def test_custom_alphabet(self):
        data = bytearray(0x100)
        # A0 reversed
        table = bytearray(b'zyxwvutsrqponmlkjihgfedcba') + bytearray(b'ABCDEFGHIJKLMNOPQRSTUVWXYZ') + \
                bytearray(b' \n0123456789.,!?_#\'"/\\-:()')
        data[0x80:0x80+len(table)] = table
        ztext = ZText(5,memory=Memory(data),alphabet_address=0x80)
        self.assertEqual('za',ztext.decode_zchars([6,31]))

    def test_unicode_table(self):
        data = bytearray(0x20)
        data[0x10] = 1
        data[0x11:0x13] = bytes([0x4e,0x2d])
        ztext = ZText(5,memory=Memory(data),unicode_address=0x10)
        self.assertEqual('中',ztext.zscii_to_unicode(155))
        self.assertEqual(155,ztext.unicode_to_zscii('中'))

class DictionaryTests(unittest.TestCase):
    def setUp(self):
        builder = sample_story(3)
        self.memory = Memory(builder.build())
        self.ztext = ZText(3,memory=self.memory)
        self.dictionary = Dictionary(self.memory,DICTIONARY,self.ztext)

    def test_header(self):
        self.assertEqual([ord('.'),ord(',')],self.dictionary.keyboard_codes)
        self.assertEqual(7,self.dictionary.entry_length)
        self.assertEqual(3,len(self.dictionary))
        self.assertTrue(self.dictionary.is_sorted)

    def test_lookup(self):
        address = self.dictionary.lookup('lamp')
        self.assertNotEqual(0,address)
        self.assertEqual(address,self.dictionary.lookup('lamp'))
        self.assertEqual(address,self.dictionary.lookup('LAMP'))
        self.assertEqual(0,self.dictionary.lookup('sword'))
        for word in ('take','lamp','box'):
            self.assertEqual(self.ztext.encrypt(word),self.memory[self.dictionary.lookup(word):self.dictionary.lookup(word)+4])

    def test_lookup_zscii(self):
        self.assertEqual(self.dictionary.lookup('box'),self.dictionary.lookup([ord('b'),ord('o'),ord('x')]))

    def test_unsorted_lookup(self):
        builder = StoryBuilder(5)
        builder.add_dictionary(['take','lamp','box'],is_sorted=False)
        memory = Memory(builder.build())
        dictionary = Dictionary(memory,DICTIONARY,ZText(5,memory=memory))
        self.assertFalse(dictionary.is_sorted)
        self.assertEqual(3,len(dictionary))
        self.assertNotEqual(0,dictionary.lookup('take'))
        self.assertEqual(0,dictionary.lookup('sword'))

    def test_words(self):
        self.assertEqual(['box','lamp','take'],self.dictionary.words())

    def test_split(self):
        chars = [ord(c) for c in 'take lamp,box']
        self.assertEqual([(0,[ord(c) for c in 'take']),
                          (5,[ord(c) for c in 'lamp']),
                          (9,[ord(',')]),
                          (10,[ord(c) for c in 'box'])],self.dictionary.split(chars))

    def test_tokenise(self):
        game_memory = GameMemory(self.memory,STATIC,CODE)
        chars = [ord(c) for c in 'take  sword']
        self.dictionary.tokenise(game_memory,chars,PARSE_BUFFER,1)
        self.assertEqual(2,game_memory[PARSE_BUFFER+1])
        self.assertEqual(self.dictionary.lookup('take'),game_memory.word(PARSE_BUFFER+2))
        self.assertEqual(4,game_memory[PARSE_BUFFER+4])
        self.assertEqual(1,game_memory[PARSE_BUFFER+5])
        self.assertEqual(0,game_memory.word(PARSE_BUFFER+6))
        self.assertEqual(5,game_memory[PARSE_BUFFER+8])
        self.assertEqual(7,game_memory[PARSE_BUFFER+9])

    def test_tokenise_skip_unknown(self):
        game_memory = GameMemory(self.memory,STATIC,CODE)
        game_memory.set_word(PARSE_BUFFER+6,0x1234)
        self.dictionary.tokenise(game_memory,[ord(c) for c in 'take sword'],PARSE_BUFFER,1,skip_unknown=True)
        self.assertEqual(0x1234,game_memory.word(PARSE_BUFFER+6))

class ObjectTableTests(unittest.TestCase):
    def build(self,version):
        builder = sample_story(version)
        memory = Memory(builder.build())
        self.memory = GameMemory(memory,STATIC,CODE)
        self.ztext = ZText(version,memory=memory)
        return ObjectTableManager(self.memory,OBJECTS,VersionConfig(version))

    def test_tree(self):
        for version in (3,5):
            table = self.build(version)
            self.assertEqual(0,table.parent(1))
            self.assertEqual(2,table.child(1))
            self.assertEqual(1,table.parent(2))
            self.assertEqual(3,table.sibling(2))
            self.assertTrue(table.is_child_of(3,1))

    def test_short_name(self):
        table = self.build(3)
        address,length = table.short_name(2)
        self.assertEqual('lamp',self.ztext.decode(self.memory,address,length))

    def test_attributes(self):
        for version in (3,5):
            table = self.build(version)
            self.assertTrue(table.attribute(1,1))
            self.assertFalse(table.attribute(1,0))
            table.set_attribute(1,0)
            self.assertTrue(table.attribute(1,0))
            last = VersionConfig(version).attribute_count - 1
            table.set_attribute(2,last)
            self.assertTrue(table.attribute(2,last))
            table.clear_attribute(2,last)
            self.assertFalse(table.attribute(2,last))
            self.assertRaises(ObjectException,table.attribute,1,last+1)
            self.assertEqual([0,1],table[1]['attributes'])

    def test_invalid_object(self):
        table = self.build(3)
        self.assertRaises(ObjectException,table.parent,0)
        self.assertRaises(ObjectException,table.parent,256)

    def test_insert(self):
        for version in (3,5):
            table = self.build(version)
            table.insert(3,2)
            self.assertEqual(2,table.parent(3))
            self.assertEqual(3,table.child(2))
            self.assertEqual(0,table.sibling(2))
            self.assertEqual(2,table.child(1))
            self.assertEqual(0,table.sibling(3))

    def test_insert_front(self):
        table = self.build(3)
        table.remove(3)
        table.insert(3,1)
        self.assertEqual(3,table.child(1))
        self.assertEqual(2,table.sibling(3))
        self.assertEqual(0,table.sibling(2))

    def test_insert_into_descendant(self):
        table = self.build(3)
        self.assertRaises(ObjectException,table.insert,1,2)
        self.assertRaises(ObjectException,table.insert,1,1)
        # Nothing changed
        self.assertEqual(0,table.parent(1))
        self.assertEqual(1,table.parent(2))

    def test_remove(self):
        table = self.build(5)
        table.remove(3)
        self.assertEqual(0,table.parent(3))
        self.assertEqual(0,table.sibling(2))
        table.remove(2)
        self.assertEqual(0,table.child(1))
        # Removing an object with no parent does nothing
        table.remove(2)
        self.assertEqual(0,table.parent(2))

    def check_tree(self,table,objects):
        """ Every object is in its parent's child chain exactly once, and nowhere else """
        seen = {}
        for obj_id in objects:
            child = table.child(obj_id)
            while child:
                self.assertEqual(obj_id,table.parent(child))
                self.assertFalse(child in seen,'%d is in two child chains' % child)
                seen[child] = obj_id
                child = table.sibling(child)
        for obj_id in objects:
            if table.parent(obj_id):
                self.assertEqual(table.parent(obj_id),seen.get(obj_id))
            else:
                self.assertFalse(obj_id in seen)
                self.assertEqual(0,table.sibling(obj_id))

    def is_ancestor(self,table,ancestor,obj_id):
        while obj_id:
            if obj_id == ancestor:
                return True
            obj_id = table.parent(obj_id)
        return False

    def test_random_moves(self):
        # Only three objects fit before the property tables in version 5
        for version,count in ((3,6),(5,3)):
            builder = sample_story(version)
            for obj_id in range(4,count+1):
                builder.add_object(obj_id,'thing')
            memory = GameMemory(Memory(builder.build()),STATIC,CODE)
            table = ObjectTableManager(memory,OBJECTS,VersionConfig(version))
            objects = range(1,count+1)
            rng = random.Random(1234)
            for i in range(0,200):
                obj_id = rng.choice(objects)
                if rng.random() < 0.3:
                    table.remove(obj_id)
                else:
                    destination = rng.choice(objects)
                    try:
                        table.insert(obj_id,destination)
                        self.assertEqual(destination,table.parent(obj_id))
                        self.assertEqual(obj_id,table.child(destination))
                    except ObjectException:
                        # Moving into itself or a descendant is refused
                        self.assertTrue(self.is_ancestor(table,obj_id,destination))
                self.check_tree(table,objects)

    def test_properties(self):
        for version in (3,5):
            table = self.build(version)
            self.assertEqual(10,table.get_prop(1,5))
            self.assertEqual(7,table.get_prop(1,4))
            self.assertEqual(0,table.get_prop(1,6)) # Default
            self.assertEqual(5,table.get_next_prop(1,0))
            self.assertEqual(4,table.get_next_prop(1,5))
            self.assertEqual(0,table.get_next_prop(1,4))
            self.assertRaises(ObjectException,table.get_next_prop,1,7)
            address = table.property_address(1,4)
            self.assertEqual(1,table.get_property_length(address))
            self.assertEqual(2,table.get_property_length(table.property_address(1,5)))
            self.assertEqual(0,table.property_address(1,6))
            self.assertEqual(0,table.get_property_length(0))

    def test_put_prop(self):
        table = self.build(3)
        table.put_prop(1,5,0x1234)
        self.assertEqual(0x1234,table.get_prop(1,5))
        table.put_prop(1,4,0x1234)
        self.assertEqual(0x34,table.get_prop(1,4))
        self.assertRaises(ObjectException,table.put_prop,1,6,1)

    def test_long_property(self):
        builder = StoryBuilder(5)
        builder.add_object(1,'sack',properties={10: b'\x01\x02\x03\x04'})
        memory = GameMemory(Memory(builder.build()),STATIC,CODE)
        table = ObjectTableManager(memory,OBJECTS,VersionConfig(5))
        address = table.property_address(1,10)
        self.assertEqual(4,table.get_property_length(address))
        self.assertRaises(ObjectException,table.get_prop,1,10)

class RNGTests(unittest.TestCase):
    def test_predictable(self):
        rng = RNG()
        rng.reseed(-10)
        self.assertEqual([1,2,3,4,5],[rng.randint(10) for i in range(0,5)])

    def test_predictable_wraps(self):
        rng = RNG()
        rng.reseed(-3)
        self.assertEqual([1,2,3,1,2],[rng.randint(10) for i in range(0,5)])
        rng.reseed(-5)
        self.assertEqual([1,2,1,2,1],[rng.randint(2) for i in range(0,5)])

    def test_seeded_repeats(self):
        rng = RNG()
        rng.reseed(12345)
        first = [rng.randint(100) for i in range(0,10)]
        rng.reseed(12345)
        self.assertEqual(first,[rng.randint(100) for i in range(0,10)])

    def test_range(self):
        rng = RNG()
        for i in range(0,100):
            self.assertTrue(1 <= rng.randint(6) <= 6)
        self.assertEqual(0,rng.randint(0))

class StackTests(unittest.TestCase):
    def setUp(self):
        self.memory = GameMemory(Memory(bytearray(0x400)),0x300,0x300)
        self.call_stack = CallStack(self.memory,0x100)

    def test_variables(self):
        call_stack = self.call_stack
        call_stack.push(Routine(local_variables=[1,2]))
        call_stack.set_var(0,5)
        call_stack.set_var(0,6)
        self.assertEqual(6,call_stack.get_var(0,indirect=True))
        self.assertEqual(6,call_stack.get_var(0))
        self.assertEqual(5,call_stack.get_var(0))
        self.assertRaises(StackException,call_stack.get_var,0)
        self.assertEqual(2,call_stack.get_var(2))
        call_stack.set_var(1,-1)
        self.assertEqual(0xFFFF,call_stack.get_var(1))
        self.assertRaises(StackException,call_stack.get_var,3)
        call_stack.set_var(0x10,0x1234)
        self.assertEqual(0x1234,self.memory.word(0x100))
        self.assertEqual(0x1234,call_stack.get_nth_global(0))
        call_stack.set_var(0xFF,1)
        self.assertEqual(1,self.memory.word(0x100+(239*2)))

    def test_return_from_main(self):
        self.assertRaises(StackException,self.call_stack.pop)

    def test_routine_from_memory(self):
        memory = Memory(bytearray([2,0x12,0x34,0x56,0x78,0]))
        routine = Routine.from_memory(memory,0,0x100,5,VersionConfig(3),args=[9])
        self.assertEqual([9,0x5678],routine.local_variables)
        self.assertEqual(1,routine.argument_count)
        self.assertEqual(5,routine.code_starts_at)
        routine = Routine.from_memory(memory,0,0x100,5,VersionConfig(5),args=[9,8,7])
        self.assertEqual([9,8],routine.local_variables)
        self.assertEqual(1,routine.code_starts_at)
        self.assertRaises(StackException,Routine.from_memory,Memory([16]),0,0,None,VersionConfig(5))

    def test_unwind(self):
        self.call_stack.push(Routine())
        self.call_stack.push(Routine())
        self.call_stack.unwind_to(2)
        self.assertEqual(2,len(self.call_stack))
        self.assertRaises(StackException,self.call_stack.unwind_to,3)

class ErrorClassifierTests(unittest.TestCase):
    def test_warn_once(self):
        reports = []
        classifier = ErrorClassifier(ErrorPolicy.CONTINUE_WARN_ONCE,lambda f,d: reports.append(f))
        self.assertEqual(Recovery.CONTINUE,classifier.classify(ZArithmeticException('x'),'div'))
        self.assertEqual(Recovery.CONTINUE,classifier.classify(ZArithmeticException('x'),'div'))
        self.assertEqual(Recovery.CONTINUE,classifier.classify(ZArithmeticException('x'),'mod'))
        self.assertEqual(2,len(reports))
        self.assertEqual(3,classifier.fault_count)

    def test_warn_always(self):
        reports = []
        classifier = ErrorClassifier(ErrorPolicy.CONTINUE_WARN_ALWAYS,lambda f,d: reports.append(f))
        classifier.classify(ZArithmeticException('x'),'div')
        classifier.classify(ZArithmeticException('x'),'div')
        self.assertEqual(2,len(reports))

    def test_ignore(self):
        reports = []
        classifier = ErrorClassifier(ErrorPolicy.IGNORE,lambda f,d: reports.append(f))
        self.assertEqual(Recovery.CONTINUE,classifier.classify(ObjectException('x'),'get_prop'))
        self.assertEqual([],reports)

    def test_abort_and_fatal(self):
        self.assertEqual(Recovery.HALT,ErrorClassifier(ErrorPolicy.ABORT).classify(ObjectException('x')))
        fatal = InstructionException('Unknown opcode',recoverable=False)
        self.assertEqual(Recovery.HALT,ErrorClassifier(ErrorPolicy.IGNORE).classify(fatal))

    def test_message(self):
        self.assertEqual('Recoverable Arithmetic error at 0x00500: div by zero',str(ZArithmeticException('div by zero',pc=0x500)))

class IFFTests(unittest.TestCase):
    def test_round_trip_padding(self):
        data = write_form('TEST',[('ABCD',b'\x01\x02\x03'),('EFGH',b'\x04')])
        self.assertEqual(0,len(data) % 2)
        chunks = read_form(data,'TEST')
        self.assertEqual(['ABCD','EFGH'],[c.chunk_id for c in chunks])
        self.assertEqual(b'\x01\x02\x03',chunks[0].data)
        self.assertEqual(12,chunks[0].offset)
        self.assertEqual(24,chunks[1].offset)

    def test_bad_form(self):
        self.assertRaises(ResourceException,read_form,b'FORM\x00\x00\x00\x04TEST','OTHR')
        self.assertRaises(ResourceException,read_form,b'NOPE','TEST')
        self.assertRaises(SaveRestoreException,read_form,b'FORM\x00\x00\x01\x00TEST','TEST',SaveRestoreException)

def make_blorb(story_data,exec_count=1,chunk_id='ZCOD',loops=None):
    """ Build a blorb with the story as its only chunk after the index """
    entries = exec_count + 1
    index_length = 4 + (12*entries)
    story_offset = 12 + 8 + index_length
    sound_offset = story_offset + 8 + len(story_data) + (len(story_data) % 2)
    index = struct.pack('>I',entries)
    for i in range(0,exec_count):
        index += b'Exec' + struct.pack('>II',i,story_offset)
    index += b'Snd ' + struct.pack('>II',3,sound_offset)
    chunks = [('RIdx',index),(chunk_id,story_data),('OGGV',b'\x00\x01')]
    if loops:
        chunks.append(('Loop',b''.join([struct.pack('>II',n,r) for n,r in loops.items()])))
    return write_form('IFRS',chunks)

class BlorbTests(unittest.TestCase):
    def test_story(self):
        story_data = sample_story(5).build()
        data = make_blorb(story_data,loops={3: 4})
        self.assertTrue(is_blorb(data))
        self.assertFalse(is_blorb(story_data))
        blorb = Blorb(data)
        self.assertEqual(story_data,blorb.story_data())
        self.assertEqual('OGGV',blorb.sound(3).chunk_id)
        self.assertEqual(4,blorb.repeats(3))
        self.assertEqual(None,blorb.repeats(4))
        self.assertEqual(None,blorb.picture(1))
        self.assertEqual([3],[s.number for s in blorb.sounds()])

    def test_no_exec(self):
        self.assertRaises(ResourceException,Blorb,make_blorb(sample_story(5).build(),exec_count=0))

    def test_multiple_exec(self):
        self.assertRaises(ResourceException,Blorb,make_blorb(sample_story(5).build(),exec_count=2))

    def test_not_zcode(self):
        self.assertRaises(ResourceException,Blorb,make_blorb(sample_story(5).build(),chunk_id='GLUL'))

    def test_unsupported_version(self):
        story_data = bytearray(sample_story(5).build())
        story_data[0] = 6
        self.assertRaises(ResourceException,Blorb,make_blorb(bytes(story_data)))

class QuetzalTests(unittest.TestCase):
    def test_compress(self):
        original = bytes([1,2,3,4] + [0]*600 + [9])
        current = bytearray(original)
        current[1] = 7
        current[500] = 1
        compressed = quetzal.compress_memory(current,original)
        # Two changed bytes, a run of one zero and two runs for the 498 zeros in between
        self.assertEqual(bytes([0,0,2^7,0,255,0,241,1]),compressed)
        self.assertEqual(bytes(current),quetzal.decompress_memory(compressed,original))

    def test_compress_unchanged(self):
        original = bytes(range(0,100))
        self.assertEqual(b'',quetzal.compress_memory(original,original))
        self.assertEqual(original,quetzal.decompress_memory(b'',original))

    def test_bad_cmem(self):
        self.assertRaises(SaveRestoreException,quetzal.decompress_memory,b'\x00',bytes(10))
        self.assertRaises(SaveRestoreException,quetzal.decompress_memory,b'\x00\x20',bytes(10))

    def test_encode_decode(self):
        original = bytes(0x40)
        dynamic = bytearray(original)
        dynamic[0x10] = 0x55
        main = Routine()
        main.stack = [1,2]
        routine = Routine(return_to_address=0x1234,store_to=0x10,local_variables=[5,6,7],argument_count=2)
        routine.stack = [0xFFFF]
        discard = Routine(return_to_address=0x2345,store_to=None,local_variables=[],argument_count=0)
        state = quetzal.SaveState(3,b'261018',0xABCD,0x567,dynamic,[main,routine,discard])
        for compress in (True,False):
            decoded = quetzal.decode(quetzal.encode(state,original,compress=compress),original)
            self.assertEqual(3,decoded.release)
            self.assertEqual(b'261018',decoded.serial)
            self.assertEqual(0xABCD,decoded.checksum)
            self.assertEqual(0x567,decoded.pc)
            self.assertEqual(bytes(dynamic),decoded.dynamic_memory)
            self.assertEqual([main,routine,discard],decoded.frames)

    def test_missing_chunks(self):
        self.assertRaises(SaveRestoreException,quetzal.decode,write_form('IFZS',[('Stks',b'')]),bytes(4))
        ifhd = bytes(13)
        self.assertRaises(SaveRestoreException,quetzal.decode,write_form('IFZS',[('IFhd',ifhd),('UMem',bytes(4))]),bytes(4))
        self.assertRaises(SaveRestoreException,quetzal.decode,write_form('IFZS',[('IFhd',ifhd),('UMem',bytes(3)),('Stks',bytes(8))]),bytes(4))
        self.assertRaises(SaveRestoreException,quetzal.decode,write_form('IFZS',[('IFhd',ifhd[0:5])]),bytes(4))

    def test_truncated_stks(self):
        data = write_form('IFZS',[('IFhd',bytes(13)),('UMem',bytes(4)),('Stks',bytes([0,0,0,2,0,0,0,0,0]))])
        self.assertRaises(SaveRestoreException,quetzal.decode,data,bytes(4))

class ConfigTests(unittest.TestCase):
    def write(self,text):
        f = tempfile.NamedTemporaryFile('w',suffix='.yaml',delete=False)
        f.write(text)
        f.close()
        self.addCleanup(os.remove,f.name)
        return f.name

    def test_defaults(self):
        config = Config.from_file('/nonexistent/zmachine.yaml')
        self.assertEqual((9,2),config.default_colours)
        self.assertFalse(config.logging)
        self.assertEqual(ErrorPolicy.CONTINUE_WARN_ONCE,config.error_handling)

    def test_from_file(self):
        path = self.write('foreground: 4\nbackground: 7\nlogging: enabled\nerror_handling: abort\n')
        config = Config.from_file(path)
        self.assertEqual((4,7),config.default_colours)
        self.assertTrue(config.logging)
        self.assertEqual(ErrorPolicy.ABORT,config.error_handling)

    def test_unknown_policy(self):
        config = Config.from_dict({'error_handling': 'explode','logging': 'disabled'})
        self.assertEqual(ErrorPolicy.CONTINUE_WARN_ONCE,config.error_handling)
        self.assertFalse(config.logging)

    def test_bad_file(self):
        self.assertRaises(ConfigException,Config.from_file,self.write('foreground: [1\n'))
        self.assertRaises(ConfigException,Config.from_file,self.write('- a list\n'))
        self.assertRaises(ConfigException,Config.from_dict,{'foreground': 'red'})

    def test_empty_file(self):
        config = Config.from_file(self.write(''))
        self.assertEqual((9,2),config.default_colours)

if __name__ == '__main__':
    unittest.main()
