""" Reading and writing of IFF (EA Interchange File Format) chunk streams, which both
    Quetzal saves and Blorb resource files are built on """
import struct

from zmachine.errors import ResourceException

class Chunk(object):
    """ One typed, length-prefixed chunk. offset is the position of the chunk header in the file """
    def __init__(self,chunk_id,data,offset=0):
        self.chunk_id = chunk_id
        self.data = data
        self.offset = offset

    def __len__(self):
        return len(self.data)

    def __repr__(self):
        return 'Chunk(%s,%d bytes at 0x%x)' % (self.chunk_id,len(self.data),self.offset)

def read_chunk(data,offset,exception_class=ResourceException):
    """ Read the chunk at offset, returning the chunk and the offset of the next chunk """
    if offset + 8 > len(data):
        raise exception_class('Truncated chunk header at 0x%x' % offset)
    chunk_id = data[offset:offset+4].decode('latin-1')
    length = struct.unpack('>I',bytes(data[offset+4:offset+8]))[0]
    start = offset + 8
    if start + length > len(data):
        raise exception_class('Chunk %s at 0x%x claims %d bytes, only %d available' % (chunk_id,offset,length,len(data)-start))
    next_offset = start + length
    # Chunks are padded to an even length
    if length % 2:
        next_offset+=1
    return Chunk(chunk_id,bytes(data[start:start+length]),offset), next_offset

def read_form(data,form_type,exception_class=ResourceException):
    """ Validate the FORM header and return the chunks within it, in order """
    if len(data) < 12 or bytes(data[0:4]) != b'FORM':
        raise exception_class('Not an IFF file')
    if bytes(data[8:12]) != form_type.encode('latin-1'):
        raise exception_class('Expected IFF type %s, found %s' % (form_type,bytes(data[8:12]).decode('latin-1')))
    form_length = struct.unpack('>I',bytes(data[4:8]))[0]
    end = 8 + form_length
    if end > len(data):
        raise exception_class('FORM claims %d bytes, only %d available' % (form_length,len(data)-8))

    chunks = []
    offset = 12
    while offset < end:
        chunk,offset = read_chunk(data[0:end],offset,exception_class)
        chunks.append(chunk)
    return chunks

def write_chunk(chunk_id,data):
    out = bytearray(chunk_id.encode('latin-1'))
    out.extend(struct.pack('>I',len(data)))
    out.extend(data)
    if len(data) % 2:
        out.append(0)
    return bytes(out)

def write_form(form_type,chunks):
    """ chunks is a list of (chunk id, data) """
    body = bytearray(form_type.encode('latin-1'))
    for chunk_id,data in chunks:
        body.extend(write_chunk(chunk_id,data))
    return b'FORM' + struct.pack('>I',len(body)) + bytes(body)
