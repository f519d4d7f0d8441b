""" Quetzal, the standard save file format (http://inform-fiction.org/zmachine/standards/quetzal/).
    A save is a FORM IFZS holding IFhd (story identity and pc), CMem or UMem (dynamic memory)
    and Stks (the call stack). """
import logging
import struct

from zmachine.errors import SaveRestoreException
from zmachine.iff import read_form,write_form
from zmachine.stack import Routine

logger = logging.getLogger(__name__)

FORM_TYPE = 'IFZS'
MAX_RUN = 256

class SaveState(object):
    """ Everything needed to put the machine back the way it was """
    def __init__(self,release,serial,checksum,pc,dynamic_memory,frames):
        self.release = release
        self.serial = bytes(serial)
        self.checksum = checksum
        self.pc = pc
        self.dynamic_memory = bytes(dynamic_memory)
        self.frames = frames

    def matches(self,header):
        """ Is this save for the story with this header? (5.4 of the Quetzal spec) """
        return self.release == header.release_number and \
               self.serial == header.serial and \
               self.checksum == header.checksum

def compress_memory(current,original):
    """ XOR current against original, then run-length encode runs of zeros as a zero byte
        followed by the run length - 1. Trailing zeros are dropped """
    xor = [c ^ o for c,o in zip(current,original)]
    while xor and xor[-1] == 0:
        xor.pop()
    out = bytearray()
    idx = 0
    while idx < len(xor):
        b = xor[idx]
        if b:
            out.append(b)
            idx+=1
            continue
        run = 0
        while idx < len(xor) and xor[idx] == 0 and run < MAX_RUN:
            run+=1
            idx+=1
        out.append(0)
        out.append(run-1)
    return bytes(out)

def decompress_memory(data,original):
    """ Reverse compress_memory against the original dynamic memory """
    xor = bytearray()
    idx = 0
    while idx < len(data):
        b = data[idx]
        idx+=1
        if b:
            xor.append(b)
            continue
        if idx >= len(data):
            raise SaveRestoreException('CMem ends in the middle of a run')
        xor.extend([0] * (data[idx]+1))
        idx+=1
    if len(xor) > len(original):
        raise SaveRestoreException('CMem expands to %d bytes, dynamic memory is %d' % (len(xor),len(original)))
    xor.extend([0] * (len(original)-len(xor)))
    return bytes([x ^ o for x,o in zip(xor,original)])

def _encode_ifhd(state):
    return struct.pack('>H',state.release) + state.serial + struct.pack('>H',state.checksum) + \
           struct.pack('>I',state.pc)[1:]

def _encode_stks(frames):
    data = bytearray()
    for idx,frame in enumerate(frames):
        flags = len(frame.local_variables)
        result_variable = 0
        if frame.store_to is None:
            # The main routine's dummy frame is written with zero flags
            if idx > 0:
                flags = flags | 0x10
        else:
            result_variable = frame.store_to
        data.extend(struct.pack('>I',frame.return_to_address)[1:])
        data.append(flags)
        data.append(result_variable)
        data.append((1 << frame.argument_count) - 1)
        data.extend(struct.pack('>H',len(frame.stack)))
        for val in frame.local_variables:
            data.extend(struct.pack('>H',val))
        for val in frame.stack:
            data.extend(struct.pack('>H',val))
    return bytes(data)

def encode(state,original_dynamic,compress=True):
    """ Return the bytes of a Quetzal file for the state """
    if compress:
        memory_chunk = ('CMem',compress_memory(state.dynamic_memory,original_dynamic))
    else:
        memory_chunk = ('UMem',state.dynamic_memory)
    return write_form(FORM_TYPE,[('IFhd',_encode_ifhd(state)),
                                  memory_chunk,
                                  ('Stks',_encode_stks(state.frames))])

def _decode_stks(data):
    frames = []
    position = 0
    while position < len(data):
        if position + 8 > len(data):
            raise SaveRestoreException('Truncated frame header in Stks at %d' % position)
        return_address = struct.unpack('>I',b'\x00' + bytes(data[position:position+3]))[0]
        flags = data[position+3]
        result_variable = data[position+4]
        arguments = data[position+5]
        stack_size = struct.unpack('>H',bytes(data[position+6:position+8]))[0]
        position+=8
        local_count = flags & 0x0F
        needed = (local_count + stack_size) * 2
        if position + needed > len(data):
            raise SaveRestoreException('Truncated frame data in Stks at %d' % position)
        values = struct.unpack('>%dH' % (local_count + stack_size),bytes(data[position:position+needed]))
        position+=needed

        if not frames or flags & 0x10:
            store_to = None
        else:
            store_to = result_variable
        argument_count = 0
        while arguments & (1 << argument_count):
            argument_count+=1
        frame = Routine(return_to_address=return_address,
                        store_to=store_to,
                        local_variables=values[0:local_count],
                        argument_count=argument_count)
        frame.stack = list(values[local_count:])
        frames.append(frame)
    if not frames:
        raise SaveRestoreException('Stks chunk has no frames')
    return frames

def decode(data,original_dynamic):
    """ Parse a Quetzal file into a SaveState. original_dynamic is the dynamic memory of the
        story as loaded, needed to expand CMem. Nothing about the running machine is touched """
    chunks = read_form(data,FORM_TYPE,SaveRestoreException)
    ifhd = memory = frames = None
    for chunk in chunks:
        if chunk.chunk_id == 'IFhd':
            if len(chunk.data) < 13:
                raise SaveRestoreException('IFhd chunk is %d bytes, expected 13' % len(chunk.data))
            ifhd = chunk.data
        elif chunk.chunk_id == 'CMem':
            memory = decompress_memory(chunk.data,original_dynamic)
        elif chunk.chunk_id == 'UMem':
            if len(chunk.data) != len(original_dynamic):
                raise SaveRestoreException('UMem is %d bytes, dynamic memory is %d' % (len(chunk.data),len(original_dynamic)))
            memory = chunk.data
        elif chunk.chunk_id == 'Stks':
            frames = _decode_stks(chunk.data)
        else:
            logger.debug('Skipping %s chunk in save' % chunk.chunk_id)

    if ifhd is None:
        raise SaveRestoreException('Save has no IFhd chunk')
    if memory is None:
        raise SaveRestoreException('Save has no CMem or UMem chunk')
    if frames is None:
        raise SaveRestoreException('Save has no Stks chunk')

    release = struct.unpack('>H',bytes(ifhd[0:2]))[0]
    checksum = struct.unpack('>H',bytes(ifhd[8:10]))[0]
    pc = struct.unpack('>I',b'\x00' + bytes(ifhd[10:13]))[0]
    return SaveState(release,ifhd[2:8],checksum,pc,memory,frames)
