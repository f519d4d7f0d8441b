""" Handles ZChars/ZSCII and the general text processing part of the Z-Machine (section 3) """

from zmachine.errors import ZMachineException,ErrorKind

class ZTextException(ZMachineException):
    """ Thrown when ztext is invalid in some way """
    kind = ErrorKind.OPCODE

class ZTextState(object):
    DEFAULT                         = 0 # Default state
    WAITING_FOR_ABBREVIATION        = 1 # Waiting for an abbreviation. Triggered by zchars 1-3
    GETTING_10BIT_ZCHAR_CHAR1       = 2 # See 3.4. Zchar 6 uses next two chars to make a 10-bit character
    GETTING_10BIT_ZCHAR_CHAR2       = 3 # Second char for 2-character zchar

# Padding zchar used to fill out encoded text (3.7)
PAD_ZCHAR = 5

# ZSCII codes with special meanings for output/input (3.8)
ZSCII_NEWLINE = 13
ZSCII_DELETE = 8
ZSCII_ESCAPE = 27

class ZText(object):
    """ Abstraction for handling Z-Machine text. Decodes packed strings from memory into
        unicode strings, and encodes unicode text into zchars (for dictionary lookups). """
    # Position 0 of A2 is never printed: zchar 6 in A2 is the 10-bit escape
    ZCHARS    = ['abcdefghijklmnopqrstuvwxyz',
                 'ABCDEFGHIJKLMNOPQRSTUVWXYZ',
                 ' \n0123456789.,!?_#\'"/\\-:()']
    ZCHARS_V1 = ['abcdefghijklmnopqrstuvwxyz',
                 'ABCDEFGHIJKLMNOPQRSTUVWXYZ',
                 ' 0123456789.,!?_#\'"/\\<-:()']
    # 3.8.5.3 default extra characters, ZSCII 155 onwards
    DEFAULT_UNICODE = (u'äöüÄÖÜß»«ëïÿËÏ'
                       u'áéíóúýÁÉÍÓÚÝ'
                       u'àèìòùÀÈÌÒÙ'
                       u'âêîôûÂÊÎÔÛ'
                       u'åÅøØãñõÃÑÕ'
                       u'æÆçÇþðÞÐ£œŒ¡¿')
    SPACE = 32

    def __init__(self,version,memory=None,abbrev_address=0,alphabet_address=0,unicode_address=0,debug=False):
        self.version = version
        self.memory = memory
        self.abbrev_address = abbrev_address
        self.debug=debug
        self.unicode_chars = self._load_unicode_table(unicode_address)
        self.alphabets = self._load_alphabets(alphabet_address)
        self.reset()

    def _load_alphabets(self,alphabet_address):
        if self.version == 1:
            return list(ZText.ZCHARS_V1)
        if self.version < 5 or not alphabet_address or self.memory is None:
            return list(ZText.ZCHARS)
        # 3.5.5 - 78 ZSCII bytes, 26 per alphabet. A2 positions 6 and 7 are fixed.
        alphabets = []
        for a in range(0,3):
            chars = []
            for i in range(0,26):
                chars.append(self.zscii_to_unicode(self.memory[alphabet_address + (a*26) + i]))
            alphabets.append(''.join(chars))
        alphabets[2] = ' \n' + alphabets[2][2:]
        return alphabets

    def _load_unicode_table(self,unicode_address):
        if not unicode_address or self.memory is None:
            return ZText.DEFAULT_UNICODE
        # 3.8.5.2
        count = self.memory[unicode_address]
        chars = []
        for i in range(0,count):
            chars.append(chr(self.memory.word(unicode_address + 1 + (i*2))))
        return ''.join(chars)

    def reset(self):
        self._current_alphabet = 0
        self._shift_alphabet = None
        self.state = ZTextState.DEFAULT
        self._previous_zchar = None
        self._allow_abbreviations = True

    ### Decoding

    def decode(self,memory,start_at=0,length_in_bytes=0):
        """ Convert the ztext starting at start_at in memory to a unicode string.
            If length_in_bytes > 0, convert that many bytes. Otherwise convert until the end of
            string word is found """
        chars = self._extract_zchars(memory,start_at,length_in_bytes)
        return self.decode_zchars(chars)

    def decode_zchars(self,zchars,allow_abbreviations=True):
        """ Convert a list of zchars to a unicode string """
        self.reset()
        self._allow_abbreviations = allow_abbreviations
        output_chars = []
        for zchar in zchars:
            text = self.handle_zchar(zchar)
            if text:
                output_chars.append(text)
            if self.debug:
                print('   %d,%s' % (zchar,repr(text)))
        self.reset()
        return ''.join(output_chars)

    def _extract_zchars(self,memory,start_at,length_in_bytes):
        idx = start_at
        chars = []
        while True:
            if length_in_bytes > 0 and idx >= start_at + length_in_bytes:
                break
            zchars,is_last_word = self.get_zchars_from_memory(memory,idx)
            chars.extend(zchars)
            idx+=2
            if length_in_bytes < 1 and is_last_word:
                break
        return chars

    def string_length(self,memory,start_at):
        """ Return the number of bytes used by the encoded string at start_at """
        idx = start_at
        while True:
            zchars,is_last_word = self.get_zchars_from_memory(memory,idx)
            idx+=2
            if is_last_word:
                return idx - start_at

    def handle_zchar(self,zchar):
        """ Handle the given zchar based on our state and other information.
            Returns text to print, or '' if nothing should be printed
        """
        try:
            if self.state == ZTextState.WAITING_FOR_ABBREVIATION:
                self.state = ZTextState.DEFAULT
                return self._expand_abbreviation((32 * (self._previous_zchar-1)) + zchar)
            if self.state == ZTextState.GETTING_10BIT_ZCHAR_CHAR1:
                self.state = ZTextState.GETTING_10BIT_ZCHAR_CHAR2
                return ''
            if self.state == ZTextState.GETTING_10BIT_ZCHAR_CHAR2:
                zscii = (self._previous_zchar << 5) | zchar
                self.state = ZTextState.DEFAULT
                return self.zscii_to_unicode(zscii)

            if zchar == 0:
                # 3.5.1
                self._shift_alphabet = None
                return ' '
            if zchar < 6:
                return self._handle_control_zchar(zchar)
            if zchar == 6 and self.alphabet == 2:
                # 3.4
                self._shift_alphabet = None
                self.state = ZTextState.GETTING_10BIT_ZCHAR_CHAR1
                return ''
            result = self._map_zchar(zchar)
            self._shift_alphabet = None
            return result
        finally:
            self._previous_zchar = zchar

    def _handle_control_zchar(self,zchar):
        """ zchars 1 to 5 - abbreviations, newline and shifts depending on version """
        if zchar == 1 and self.version == 1:
            # 3.5.2
            self._shift_alphabet = None
            return '\n'
        if zchar in self._abbreviation_codes():
            # 3.3
            if not self._allow_abbreviations:
                raise ZTextException('Abbreviation text may not contain an abbreviation')
            self._shift_alphabet = None
            self.state = ZTextState.WAITING_FOR_ABBREVIATION
            return ''
        if self.version < 3:
            # 3.2.2 - 2 and 3 shift for one char, 4 and 5 lock
            self.shift(reverse=zchar in (3,5),permanent=zchar in (4,5))
        elif zchar == 4:
            # 3.2.3
            self._shift_alphabet = 1
        elif zchar == 5:
            self._shift_alphabet = 2
        return ''

    def _abbreviation_codes(self):
        if self.version == 1:
            return ()
        if self.version == 2:
            return (1,)
        return (1,2,3)

    def _map_zchar(self,zchar):
        """ Map a zchar 6-31 to text in the current alphabet. Newline is A2 zchar 7 past version 1 """
        return self.alphabets[self.alphabet][zchar-6]

    def _expand_abbreviation(self,index):
        if self.memory is None:
            raise ZTextException('No memory available for abbreviation %d' % index)
        # 3.3, 1.2.2 (word address = address / 2)
        address = self.memory.word(self.abbrev_address + (index*2))*2
        ztext = ZText(self.version,memory=self.memory)
        ztext.alphabets = self.alphabets
        ztext.unicode_chars = self.unicode_chars
        return ztext.decode_zchars(ztext._extract_zchars(self.memory,address,0),allow_abbreviations=False)

    @property
    def alphabet(self):
        if self._shift_alphabet is not None:
            return self._shift_alphabet
        return self._current_alphabet

    def shift(self,reverse=False,permanent=False):
        """ Shift the current alphabet. 0 shifts it "right" (A0->A1->A2)
            and 1 shifts left (A2->A0->A1). Permanent will store the new alphabet,
            and is only used for versions 1 and 2 """
        if reverse:
            new_alphabet = (self._current_alphabet + 2) % 3
        else:
            new_alphabet = (self._current_alphabet + 1) % 3
        if permanent:
            self._current_alphabet = new_alphabet
            self._shift_alphabet = None
        else:
            self._shift_alphabet = new_alphabet

    def get_zchars_from_memory(self,memory,idx):
        """ Return the three zchars at the word at index idx of memory, as well
            as whether or not this has the end bit set.

            Each word has 3 5-bit zchars, starting at bit E.
            Bit   F E D C B A 9 8 7 6 5 4 3 2 1 0
            ZChar   1 1 1 1 1 2 2 2 2 2 3 3 3 3 3
            """
        b0 = memory[idx]
        b1 = memory[idx+1]

        # Use masks and shifts to filter out the three 5-bit chars we want, as well as whether
        # end bit is set
        return ((b0 & 0x7C)>>2,((0x03 & b0) << 3) | ((0xE0 & b1)>>5), int(b1 & 0x1F)), (b0 & 0x80) == 0x80

    ### ZSCII

    def zscii_to_unicode(self,zscii):
        """ Map a ZSCII code to printable text (3.8) """
        if zscii == 0:
            return ''
        if zscii == ZSCII_NEWLINE:
            return '\n'
        if zscii == 9 or zscii == 11:
            return ' '
        if zscii >= 32 and zscii <= 126:
            return chr(zscii)
        if zscii >= 155 and zscii < 155+len(self.unicode_chars):
            return self.unicode_chars[zscii - 155]
        return '?'

    def unicode_to_zscii(self,char):
        """ Convert a unicode char to ZSCII, or None if it has no ZSCII equivalent """
        if char == '\n' or char == '\r':
            return ZSCII_NEWLINE
        c = ord(char)
        if c >= 32 and c <= 126:
            return c
        idx = self.unicode_chars.find(char)
        if idx >= 0:
            return 155 + idx
        return None

    def to_zscii(self,char):
        """ Convert an input char to ZSCII, replacing anything unrepresentable with a question mark """
        zscii = self.unicode_to_zscii(char)
        if zscii is None:
            return ord('?')
        return zscii

    ### Encoding

    def to_zchars(self,char):
        """ Convert a unicode char to one or more zchars, using only temporary shifts (3.7) """
        if char == ' ':
            return (0,)
        if self.version < 3:
            shift_up, shift_down = 2,3
        else:
            shift_up, shift_down = 4,5

        for alphabet_id, alphabet in enumerate(self.alphabets):
            # Position 0 of A2 is the escape
            start = 1 if alphabet_id == 2 else 0
            idx = alphabet.find(char,start)
            if idx >= 0:
                if alphabet_id == 0:
                    return (idx+6,)
                elif alphabet_id == 1:
                    return (shift_up,idx+6)
                return (shift_down,idx+6)

        # 3.4 - Anything else becomes a 10-bit ZSCII escape
        zscii = self.to_zscii(char)
        return (shift_down,6,zscii >> 5,zscii & 0x1F)

    def encode(self,text,length=None):
        """ Encode text to a list of zchars. Text is truncated or padded to length zchars
            (6 for versions 1-3, 9 after, the size of a dictionary word). A length of 0
            encodes all of the text, padded to a multiple of 3. """
        if text is None: text = ''
        if length is None:
            length = 6 if self.version < 4 else 9
        zchars = []
        for char in text:
            zchars.extend(self.to_zchars(char))
        if length:
            zchars = zchars[0:length]
            zchars.extend([PAD_ZCHAR] * (length - len(zchars)))
        else:
            while len(zchars) == 0 or len(zchars) % 3:
                zchars.append(PAD_ZCHAR)
        return zchars

    def pack(self,zchars):
        """ Pack zchars three to a word, setting the end bit on the final word """
        data = bytearray()
        for i in range(0,len(zchars),3):
            word = (zchars[i] << 10) | (zchars[i+1] << 5) | zchars[i+2]
            if i + 3 >= len(zchars):
                word = word | 0x8000
            data.append(word >> 8)
            data.append(word & 0xFF)
        return data

    def encrypt(self,text,length=None):
        """ Encrypt a string for dictionary matching: lower case, fixed length, packed.
            Returned as a bytearray (4 bytes for versions 1-3, 6 after). See 3.7 """
        if text is None: text = ''
        return self.pack(self.encode(text.lower(),length))
