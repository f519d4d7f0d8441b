""" Class for handling a zcode story's dictionary.
    See http://inform-fiction.org/zmachine/standards/z1point0/sect13.html
"""

from zmachine.text import ZText

class Dictionary(object):
    def __init__(self,data,start_address,ztext):
        self._memory = data
        self._start_address = start_address
        self._addr = start_address
        self.ztext = ztext
        self.key_bytes = 4 if ztext.version < 4 else 6
        self._load_header()

    def _increment_addr(self,amount=1):
        self._addr+=amount

    def _load_header(self):
        # See 13.2
        self.keyboard_codes = []
        num_codes = self._memory[self._addr]
        self._increment_addr()
        for i in range(0,num_codes):
            self.keyboard_codes.append(self._memory[self._addr])
            self._increment_addr()
        self.entry_length = self._memory[self._addr]
        self._increment_addr()
        # 13.2.3 - negative count means the entries are unsorted (only for user dictionaries)
        count = self._memory.signed_int(self._addr)
        self.is_sorted = count >= 0
        self.number_of_entries = abs(count)
        self._increment_addr(2)

    def lookup(self,word):
        """ Take a word (as a unicode string or a list of ZSCII) and look it up in the dictionary.
            Return byte address if present, 0 otherwise. """
        if not isinstance(word,str):
            word = ''.join([self.ztext.zscii_to_unicode(c) for c in word])
        key = bytes(self.ztext.encrypt(word))
        if self.is_sorted:
            low,high = 0,self.number_of_entries-1
            while low <= high:
                mid = (low + high) // 2
                entry = self[mid]
                if entry == key:
                    return self._get_item_address(mid)
                if entry < key:
                    low = mid + 1
                else:
                    high = mid - 1
            return 0

        for idx in range(0,len(self)):
            if self[idx] == key:
                return self._get_item_address(idx)
        return 0

    def split(self,chars):
        """ Split the text into a list of words and the index of their first character per 13.5.1.
            Text is array of ZSCII. Separators are words of their own, spaces are dropped. """
        words = []
        word = []
        word_start=0
        for index,c in enumerate(chars):
            if c == ZText.SPACE:
                if word:
                    words.append((word_start,word))
                    word = []
            elif c in self.keyboard_codes:
                if word:
                    words.append((word_start,word))
                    word = []
                words.append((index,[c]))
            else:
                if not word:
                    word_start = index
                word.append(c)
        if word:
            words.append((word_start,word))

        return words

    def tokenise(self,memory,chars,parse_buffer_addr,text_offset,skip_unknown=False):
        """ Write the parse table for the ZSCII chars to parse_buffer_addr. text_offset is where
            the first char sits relative to the start of the text buffer. If skip_unknown is set,
            slots for words not in the dictionary are left untouched (15.3, tokenise). """
        max_words = memory[parse_buffer_addr]
        words = self.split(chars)[0:max_words]
        memory[parse_buffer_addr+1] = len(words)

        # for each word up to max, write
        # (a) two bytes w/ addr of word (0 is missing)
        # (b) byte containing word length then
        # (c) byte containing index of first letter of this word in the text buffer
        idx = parse_buffer_addr+2
        for offset,word in words:
            addr = self.lookup(word)
            if addr or not skip_unknown:
                memory.set_word(idx,addr)
                memory[idx+2] = len(word)
                memory[idx+3] = offset+text_offset
            idx+=4
        return words

    def _get_item_address(self,item_idx):
        if item_idx < 0 or item_idx >= self.number_of_entries:
            raise IndexError('%d out of range for dictionary.' % (item_idx))
        return self._addr + (self.entry_length * item_idx)

    def words(self):
        """ Return the decoded text of every entry """
        return [self.ztext.decode(self._memory,self._get_item_address(i),self.key_bytes) for i in range(0,len(self))]

    # Allow this to be treated as a list, where word 0 is the first word in
    # the dictionary. Will return the encoded key as bytes
    def __len__(self):
        return self.number_of_entries

    def __getitem__(self,item_idx):
        address = self._get_item_address(item_idx)
        return bytes(self._memory[address:address+self.key_bytes])
