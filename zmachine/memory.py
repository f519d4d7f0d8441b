""" Support classes around working with virtual "memory" in the ZMachine VM """
from enum import Enum

from zmachine.errors import MemoryAccessException

SIGNED_INT_MIN = -32768
SIGNED_INT_MAX = 32767

class MemoryRegion(Enum):
    DYNAMIC = 0
    STATIC  = 1
    HIGH    = 2

def unpack_address(val,version,offset=0):
    """ Packed addresses are stored divided by a version dependent multiplier (1.2.3).
        offset is the routine or string offset from the header, only used for versions 6 and 7 """
    if version < 4:
        return val * 2
    if version < 6:
        return val * 4
    if version < 8:
        return (val * 4) + (offset * 8)
    return val * 8

class Memory(object):
    SIGNED_INT_MIN = SIGNED_INT_MIN
    SIGNED_INT_MAX = SIGNED_INT_MAX

    def __init__(self, data):
        self._raw_data = bytearray(data)

    def signed_int(self,idx):
        """ Return the memory value at IDX as a signed integer. Values > 32767 are
            stored as 65536 (0x10000) - n """
        d = self.word(idx)
        if d > Memory.SIGNED_INT_MAX:
            return -1 * (0x10000 - d)
        return d

    def set_signed_int(self,idx,val):
        if val < Memory.SIGNED_INT_MIN or val > Memory.SIGNED_INT_MAX:
            raise MemoryAccessException('Storing too large signed int %d to %d' % (val, idx))
        if val < 0:
            self.set_word(idx, 0x10000 + val)
        else:
            self.set_word(idx, val)

    def flag(self,idx,bit):
        """ Return True or False based on the bit at the given index """
        data = self[idx]
        data = data >> bit
        return data & 0x00000001 == 1

    def set_flag(self,idx,bit,value):
        data = self[idx]
        new_data = 0x1 << bit
        if value:
            self[idx] = data | new_data
        else:
            self[idx] = (~new_data) & data

    def word(self, idx):
        """ Return the (big-endian) word at the provided address """
        return (self[idx]*256) + self[idx+1]

    def set_word(self,idx,val):
        """ Set the two-byte word at the given index to the (unsigned) integer value """
        val = val & 0xFFFF
        self[idx] = (val & 0xFF00) >> 8
        self[idx+1] = val & 0x00FF

    def __len__(self):
        return len(self._raw_data)

    def __getitem__(self,idx):
        """ Return byte at the provided address, or a bytearray for a slice """
        if isinstance(idx,slice):
            return self._raw_data[idx]
        if idx < 0 or idx >= len(self._raw_data):
            raise MemoryAccessException('Address 0x%x is outside of memory (0x%x bytes)' % (idx,len(self._raw_data)))
        return self._raw_data[idx]

    def __setitem__(self,idx,val):
        """ Set byte at provided address """
        if idx < 0 or idx >= len(self._raw_data):
            raise MemoryAccessException('Address 0x%x is outside of memory (0x%x bytes)' % (idx,len(self._raw_data)))
        self._raw_data[idx] = val & 0xFF

    def __str__(self):
        return ''.join(['%.2x' % x for x in self._raw_data])

    def dump(self, width=16,start_address=0):
        """ Dump all memory in a convienient format """
        counter = 0
        length = len(self)
        while counter < length:
            row = []
            if width + counter > length:
                width = length-counter
            for i in range(0,width):
                row.append('%.2x' % self[counter+i])
            print('%s %s' % ('%.8x' % (counter+start_address), ' '.join(row)))
            counter += width

class GameMemory(Memory):
    """ Wrapper around the memory that restricts writes to dynamic memory. Reads are
        allowed anywhere in the image. Shares the underlying bytes with the wrapped memory. """
    def __init__(self,memory,dynamic_end,high_start):
        self._raw_data = memory._raw_data
        self.dynamic_end = dynamic_end
        self.high_start = max(high_start,dynamic_end)

    def region_of(self,address):
        if address < 0 or address >= len(self._raw_data):
            raise MemoryAccessException('Address 0x%x is outside of memory' % address)
        if address < self.dynamic_end:
            return MemoryRegion.DYNAMIC
        if address < self.high_start:
            return MemoryRegion.STATIC
        return MemoryRegion.HIGH

    def read_byte(self,address):
        return self[address]

    def read_word(self,address):
        return self.word(address)

    def write_byte(self,address,value):
        self[address] = value

    def write_word(self,address,value):
        self.set_word(address,value)

    def __setitem__(self,idx,value):
        if idx < 0 or idx >= self.dynamic_end:
            raise MemoryAccessException('Address 0x%x is not in dynamic memory (ends at 0x%x)' % (idx,self.dynamic_end))
        self._raw_data[idx] = value & 0xFF

    def set_word(self,idx,val):
        # Both bytes must be writeable, so a failed write leaves memory untouched
        if idx < 0 or idx + 1 >= self.dynamic_end:
            raise MemoryAccessException('Word address 0x%x is not in dynamic memory (ends at 0x%x)' % (idx,self.dynamic_end))
        super(GameMemory,self).set_word(idx,val)

    def dynamic_bytes(self):
        """ Return a copy of dynamic memory """
        return bytes(self._raw_data[0:self.dynamic_end])

    def replace_dynamic(self,data):
        """ Overwrite all of dynamic memory in one step """
        if len(data) != self.dynamic_end:
            raise MemoryAccessException('Dynamic memory replacement is 0x%x bytes, expected 0x%x' % (len(data),self.dynamic_end))
        self._raw_data[0:self.dynamic_end] = data
