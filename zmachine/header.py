""" The story file header (bytes 0x00 through 0x40) and the version dependent
    configuration that is resolved once at load time. See section 11 of the Z-Machine Standard.
"""
from zmachine.errors import StoryFileException
from zmachine.memory import Memory,unpack_address

SUPPORTED_VERSIONS = (1,2,3,4,5,7,8)

class VersionConfig(object):
    """ Every version dependent number the rest of the machine needs, resolved once from
        the version byte and passed to each component instead of branching on version
        all over the codebase. """
    def __init__(self,version,routines_offset=0,strings_offset=0):
        if version not in SUPPORTED_VERSIONS:
            raise StoryFileException('Story file version %d is not supported.' % version)
        self.version = version
        self.routines_offset = routines_offset
        self.strings_offset = strings_offset

        small = version < 4
        # 12.1 - 12.3
        self.attribute_count = 32 if small else 48
        self.max_object = 255 if small else 65535
        self.object_entry_size = 9 if small else 14
        self.property_default_count = 31 if small else 63
        self.max_property = 31 if small else 63
        # 13.3, 3.7
        self.dictionary_key_bytes = 4 if small else 6
        self.encoded_zchars = 6 if small else 9
        # 11.1.6
        if version < 4:
            self.file_length_multiplier = 2
        elif version < 6:
            self.file_length_multiplier = 4
        else:
            self.file_length_multiplier = 8
        # 5.2.1
        self.routine_initial_values = version < 5
        # 3.3
        if version == 1:
            self.abbreviation_codes = ()
        elif version == 2:
            self.abbreviation_codes = (1,)
        else:
            self.abbreviation_codes = (1,2,3)
        # 3.2.2, 3.2.3
        self.shift_lock = version < 3

    def unpack_routine(self,val):
        return unpack_address(val,self.version,self.routines_offset)

    def unpack_string(self,val):
        return unpack_address(val,self.version,self.strings_offset)

    def __repr__(self):
        return 'VersionConfig(%d)' % self.version

class Header(Memory):
    VERSION = 0x00
    FLAGS_1 = 0x01
    RELEASE = 0x02
    HIMEM = 0x04
    MAIN_ROUTINE = 0x06
    DICTIONARY = 0x08
    OBJECT_TABLE = 0x0A
    GLOBAL_VARIABLES = 0x0C
    STATIC_MEMORY = 0x0E
    FLAGS_2 = 0x10
    FLAGS_2_1 = 0x11
    SERIAL = 0x12
    ABBREV_TABLE = 0x18
    FILE_LENGTH = 0x1A
    CHECKSUM    = 0x1C
    INTERPRETER_NUMBER = 0x1E
    INTERPRETER_VERSION = 0x1F
    SCREEN_HEIGHT_LINES = 0x20
    SCREEN_WIDTH_CHARS = 0x21
    SCREEN_WIDTH_UNITS = 0x22
    SCREEN_HEIGHT_UNITS = 0x24
    FONT_WIDTH = 0x26
    FONT_HEIGHT = 0x27
    ROUTINES_OFFSET = 0x28
    STRINGS_OFFSET = 0x2A
    DEFAULT_BACKGROUND = 0x2C
    DEFAULT_FOREGROUND = 0x2D
    TERMINATING_CHARS = 0x2E
    REVISION_NUMBER = 0x32
    ALPHABET_TABLE = 0x34
    HEADER_EXTENSION = 0x36

    HEADER_SIZE = 0x40

    # Flags 2 bits the interpreter must preserve across restart/restore
    PRESERVED_FLAGS_2 = 0x0003

    """ Represents the header of a ZCode file, bytes 0x00 through 0x40. The usage of the data will vary
        based on the version of the file. This is a view onto the start of the story memory, not a copy. """
    def __init__(self,memory):
        self._raw_data = memory._raw_data
        if len(self._raw_data) < Header.HEADER_SIZE:
            raise StoryFileException('Story file is too short')

    @property
    def version(self):
        return self[Header.VERSION]

    def version_config(self):
        routines_offset = strings_offset = 0
        if self.version in (6,7):
            routines_offset = self.word(Header.ROUTINES_OFFSET)
            strings_offset = self.word(Header.STRINGS_OFFSET)
        return VersionConfig(self.version,routines_offset,strings_offset)

    @property
    def release_number(self):
        return self.word(Header.RELEASE)

    @property
    def himem_address(self):
        return self.word(Header.HIMEM)

    @property
    def main_routine_addr(self):
        return self.word(Header.MAIN_ROUTINE)

    @property
    def dictionary_address(self):
        return self.word(Header.DICTIONARY)

    @property
    def object_table_address(self):
        return self.word(Header.OBJECT_TABLE)

    @property
    def global_variables_address(self):
        return self.word(Header.GLOBAL_VARIABLES)

    @property
    def static_memory_address(self):
        return self.word(Header.STATIC_MEMORY)

    @property
    def flags_2(self):
        return self.word(Header.FLAGS_2)

    @flags_2.setter
    def flags_2(self,val):
        self.set_word(Header.FLAGS_2,val)

    @property
    def serial(self):
        return bytes(self._raw_data[Header.SERIAL:Header.SERIAL+6])

    @property
    def abbrev_address(self):
        return self.word(Header.ABBREV_TABLE)

    def file_length(self,multiplier=None):
        """ File length is stored divided by a constant that varies based on version """
        if multiplier is None:
            multiplier = self.version_config().file_length_multiplier
        return self.word(Header.FILE_LENGTH)*multiplier

    @property
    def checksum(self):
        return self.word(Header.CHECKSUM)

    @property
    def revision_number(self):
        return self.word(Header.REVISION_NUMBER)

    @property
    def terminating_chars_address(self):
        return self.word(Header.TERMINATING_CHARS)

    @property
    def alphabet_table_address(self):
        return self.word(Header.ALPHABET_TABLE)

    @property
    def header_extension_address(self):
        return self.word(Header.HEADER_EXTENSION)

    def extension_word(self,n):
        """ Return word n of the header extension table, or 0 if it isn't present (11.1.7) """
        address = self.header_extension_address
        if not address or address + 1 >= len(self._raw_data):
            return 0
        if self.word(address) < n:
            return 0
        return self.word(address + (n*2))

    @property
    def unicode_table_address(self):
        return self.extension_word(3)

    @property
    def flag_status_line_type(self):
        """ Return 0 if score/turn, 1 if hours:mins """
        return 1 if self.flag(Header.FLAGS_1, 1) else 0

    @property
    def flag_story_two_disk(self):
        """ Is this story file on two disks? """
        return self.flag(Header.FLAGS_1,2)

    @property
    def flag_status_line_not_available(self):
        return self.flag(Header.FLAGS_1,4)

    @property
    def flag_screen_splitting_available(self):
        return self.flag(Header.FLAGS_1,5)

    @flag_screen_splitting_available.setter
    def flag_screen_splitting_available(self,val):
        return self.set_flag(Header.FLAGS_1,5,val)

    @property
    def flag_variable_pitch_default(self):
        """ Return True if a variable pitch font is default """
        return self.flag(Header.FLAGS_1,6)

    @property
    def flag_transcript(self):
        return self.flag(Header.FLAGS_2_1,0)

    @flag_transcript.setter
    def flag_transcript(self,val):
        self.set_flag(Header.FLAGS_2_1,0,val)

    def reset(self,screen_lines=25,screen_columns=80,default_colours=(9,2),
              split_available=False,sound_available=False,colours_available=False):
        """ Reset interpreter-owned fields after an initialization, restart or restore (11.1) """
        version = self.version
        if version < 4:
            self.set_flag(Header.FLAGS_1,4,0) # Status line is available
            self.set_flag(Header.FLAGS_1,5,split_available)
            self.set_flag(Header.FLAGS_1,6,0) # Font is not variable width
        else:
            self.set_flag(Header.FLAGS_1,0,colours_available and version > 4)
            self.set_flag(Header.FLAGS_1,1,0) # No pictures
            self.set_flag(Header.FLAGS_1,2,1) # Boldface
            self.set_flag(Header.FLAGS_1,3,1) # Italic
            self.set_flag(Header.FLAGS_1,4,1) # Fixed-space font
            self.set_flag(Header.FLAGS_1,5,sound_available)
            self.set_flag(Header.FLAGS_1,7,1) # Timed input
            self[Header.SCREEN_HEIGHT_LINES] = min(screen_lines,255)
            self[Header.SCREEN_WIDTH_CHARS] = min(screen_columns,255)

        if version >= 5:
            self.set_word(Header.SCREEN_WIDTH_UNITS,screen_columns)
            self.set_word(Header.SCREEN_HEIGHT_UNITS,screen_lines)
            self[Header.FONT_WIDTH] = 1
            self[Header.FONT_HEIGHT] = 1
            self[Header.DEFAULT_FOREGROUND] = default_colours[0]
            self[Header.DEFAULT_BACKGROUND] = default_colours[1]
            self.set_flag(Header.FLAGS_2_1,3,0) # Game requests pictures
            if not sound_available:
                self.set_flag(Header.FLAGS_2_1,7,0)

        self[Header.INTERPRETER_NUMBER] = 6
        self[Header.INTERPRETER_VERSION] = ord('Z')
        self[Header.REVISION_NUMBER] = 1
        self[Header.REVISION_NUMBER+1] = 1
