""" Blorb resource files (http://www.eblong.com/zarf/blorb/blorb.html). A FORM IFRS holding a resource
    index (RIdx) that points at the story (ZCOD) and sound/picture chunks. Sounds and pictures are
    only located here, never decoded. """
import logging
import struct

from zmachine.errors import ResourceException
from zmachine.header import SUPPORTED_VERSIONS
from zmachine.iff import read_form

logger = logging.getLogger(__name__)

FORM_TYPE = 'IFRS'

EXEC = 'Exec'
PICT = 'Pict'
SND  = 'Snd '

def is_blorb(data):
    return len(data) >= 12 and bytes(data[0:4]) == b'FORM' and bytes(data[8:12]) == FORM_TYPE.encode('latin-1')

class Resource(object):
    """ An entry of the resource index, with the chunk it points at """
    def __init__(self,usage,number,offset,chunk_id=None,length=0,data=None):
        self.usage = usage
        self.number = number
        self.offset = offset
        self.chunk_id = chunk_id
        self.length = length
        self.data = data

    def __repr__(self):
        return 'Resource(%s #%d: %s, %d bytes at 0x%08x)' % (self.usage,self.number,self.chunk_id,self.length,self.offset)

class Blorb(object):
    def __init__(self,data):
        chunks = read_form(data,FORM_TYPE,ResourceException)
        chunks_by_offset = dict((c.offset,c) for c in chunks)
        self.chunks = chunks
        self.ifhd = None
        self.loops = {}
        self.resources = {}

        index = None
        for chunk in chunks:
            if chunk.chunk_id == 'RIdx':
                index = chunk
            elif chunk.chunk_id == 'IFhd':
                self.ifhd = chunk.data
            elif chunk.chunk_id == 'Loop':
                self._load_loops(chunk.data)
        if index is None:
            raise ResourceException('Blorb has no resource index')

        for usage,number,offset in self._read_index(index.data):
            chunk = chunks_by_offset.get(offset)
            if chunk is None:
                raise ResourceException('%s resource %d points at 0x%x, which is not a chunk' % (usage,number,offset))
            self.resources[(usage,number)] = Resource(usage,number,offset,chunk.chunk_id,len(chunk.data),chunk.data)

        self.executable = self._find_executable()
        logger.info('Loaded blorb with %d resources' % len(self.resources))

    def _read_index(self,data):
        if len(data) < 4:
            raise ResourceException('Resource index is truncated')
        count = struct.unpack('>I',data[0:4])[0]
        if len(data) < 4 + (count * 12):
            raise ResourceException('Resource index claims %d entries but is %d bytes' % (count,len(data)))
        entries = []
        for i in range(0,count):
            start = 4 + (i*12)
            usage = data[start:start+4].decode('latin-1')
            number,offset = struct.unpack('>II',data[start+4:start+12])
            entries.append((usage,number,offset))
        return entries

    def _load_loops(self,data):
        for i in range(0,len(data)//8):
            number,repeats = struct.unpack('>II',data[i*8:(i*8)+8])
            self.loops[number] = repeats

    def _find_executable(self):
        executables = [r for r in self.resources.values() if r.usage == EXEC]
        if not executables:
            raise ResourceException('Blorb has no executable resource')
        if len(executables) > 1:
            raise ResourceException('Blorb has %d executable resources' % len(executables))
        executable = executables[0]
        if executable.chunk_id != 'ZCOD':
            raise ResourceException('Executable is a %s chunk, not ZCOD' % executable.chunk_id)
        if not executable.data or executable.data[0] not in SUPPORTED_VERSIONS:
            raise ResourceException('Executable is not a supported story file')
        return executable

    def story_data(self):
        return self.executable.data

    def sound(self,number):
        return self.resources.get((SND,number))

    def picture(self,number):
        return self.resources.get((PICT,number))

    def sounds(self):
        return sorted([r for r in self.resources.values() if r.usage == SND],key=lambda r: r.number)

    def repeats(self,number):
        """ Repeat count for a sound from the Loop chunk, if any """
        return self.loops.get(number)
