""" Input and output capabilities the interpreter drives: the screen, sound, and the output (section 7)
    and input (section 10) streams. The base classes do nothing visible, consoles subclass them. """
import logging

from zmachine.errors import StackException
from zmachine.text import ZSCII_NEWLINE

logger = logging.getLogger(__name__)

# 7.1.2.1.1 - memory streams may be nested this deep
MAX_MEMORY_STREAMS = 16

class OutputStream(object):
    """ See section 7 """
    def __init__(self):
        # 7.2 Buffered streams word wrap
        self.is_active = False
        self.is_buffered = True

    def print_str(self,txt):
        """ Print unicode text to the stream """
        pass

    def new_line(self):
        """ Output a newline to the stream """
        pass

    def set_buffer(self,b):
        """ Set buffering on/off """
        self.is_buffered = b == True

    def flush(self):
        pass

class Screen(OutputStream):
    """ Abstraction of a screen for display. Keeps track of the state the game can ask about
        (window, cursor, font) but draws nothing """
    FONT_NORMAL = 1
    FONT_FIXED = 4

    def __init__(self,lines=25,columns=80):
        super(Screen,self).__init__()
        self.lines = lines
        self.columns = columns
        self.reset()

    def reset(self):
        self.upper_window_lines = 0
        self.window = 0
        self.cursor = (1,1)
        self.style = 0
        self.font = Screen.FONT_NORMAL
        self.colours = (1,1)

    def supports_screen_splitting(self):
        return False

    def supports_colours(self):
        return False

    def split_window(self,lines):
        self.upper_window_lines = lines

    def set_window(self,window_id):
        self.window = window_id
        if window_id == 1:
            self.cursor = (1,1)

    def erase_window(self,window_id):
        if window_id == -1:
            self.upper_window_lines = 0
            self.window = 0

    def erase_line(self,value):
        pass

    def set_cursor(self,line,column):
        self.cursor = (line,column)

    def get_cursor(self):
        return self.cursor

    def set_text_style(self,style):
        # Style 0 is roman, everything else combines
        if style == 0:
            self.style = 0
        else:
            self.style = self.style | style

    def set_colour(self,foreground,background):
        self.colours = (foreground,background)

    def set_true_colour(self,foreground,background):
        pass

    def set_font(self,font):
        """ Return the previous font, or 0 if the font is unavailable. Font 0 asks for the current font """
        if font == 0:
            return self.font
        if font not in (Screen.FONT_NORMAL,Screen.FONT_FIXED):
            return 0
        previous = self.font
        self.font = font
        return previous

    def show_status(self,room_name,score_mode=True,hours=0,minutes=0,score=0,turns=0):
        pass

class Sound(object):
    """ Sound capability. play returns a token the interpreter polls with is_finished """
    def is_available(self):
        return False

    def bleep(self,number):
        pass

    def prepare(self,number):
        pass

    def play(self,number,repeats,volume):
        return None

    def stop(self,number):
        pass

    def unload(self,number):
        pass

    def is_finished(self,token):
        return True

class MemoryStream(object):
    """ Output stream 3, which writes ZSCII into a table in memory (7.1.2.1) """
    def __init__(self,memory,table_address,ztext):
        self.memory = memory
        self.table_address = table_address
        self.ztext = ztext
        self.count = 0

    def print_str(self,txt):
        for ch in txt:
            self._write(self.ztext.to_zscii(ch))

    def new_line(self):
        self._write(ZSCII_NEWLINE)

    def _write(self,zscii):
        self.memory[self.table_address + 2 + self.count] = zscii
        self.count+=1

    def close(self):
        self.memory.set_word(self.table_address,self.count)

class OutputStreams(object):
    """ See section 7. Wraps the various output streams """
    SCREEN = 1
    TRANSCRIPT = 2
    MEMORY = 3
    SCRIPT = 4

    def __init__(self,screen,transcript=None,script=None):
        self.screen = screen
        self.transcript = transcript
        self.script = script
        self.memory_streams = []
        self.header = None

    def reset(self,memory,header,ztext):
        self.memory = memory
        self.header = header
        self.ztext = ztext
        self.memory_streams = []
        self.screen.is_active = True
        if self.script:
            self.script.is_active = False
        if self.transcript:
            self.transcript.is_active = header.flag_transcript

    def _transcript_active(self):
        # 7.3 - the game can also turn the transcript on and off through Flags 2
        if not self.transcript:
            return False
        return self.header is not None and self.header.flag_transcript

    def select_stream(self,stream_num,table=0):
        if stream_num == OutputStreams.SCREEN:
            self.screen.is_active = True
        elif stream_num == OutputStreams.TRANSCRIPT:
            if self.header is not None:
                self.header.flag_transcript = True
        elif stream_num == OutputStreams.MEMORY:
            if len(self.memory_streams) >= MAX_MEMORY_STREAMS:
                raise StackException('Output stream 3 nested more than %d deep' % MAX_MEMORY_STREAMS)
            self.memory_streams.append(MemoryStream(self.memory,table,self.ztext))
        elif stream_num == OutputStreams.SCRIPT:
            if self.script:
                self.script.is_active = True
        else:
            logger.warning('Request to select unknown output stream %d' % stream_num)

    def deselect_stream(self,stream_num):
        if stream_num == OutputStreams.SCREEN:
            self.screen.is_active = False
        elif stream_num == OutputStreams.TRANSCRIPT:
            if self.header is not None:
                self.header.flag_transcript = False
            if self.transcript:
                self.transcript.flush()
        elif stream_num == OutputStreams.MEMORY:
            if self.memory_streams:
                self.memory_streams.pop().close()
        elif stream_num == OutputStreams.SCRIPT:
            if self.script:
                self.script.is_active = False
                self.script.flush()

    def active_streams(self):
        """ While a memory stream is open, it gets all text and nothing else does (7.1.2.2) """
        if self.memory_streams:
            return [self.memory_streams[-1]]
        streams = []
        if self.screen.is_active:
            streams.append(self.screen)
        if self._transcript_active():
            streams.append(self.transcript)
        return streams

    def new_line(self):
        """ Pass a new_line call down to all active streams """
        for stream in self.active_streams():
            stream.new_line()

    def print_str(self,txt):
        """ Print the (unicode) string to all active streams """
        if not txt:
            return
        for stream in self.active_streams():
            stream.print_str(txt)

    def command_entered(self,text):
        """ Record a line of input in the transcript and command script """
        if self._transcript_active():
            self.transcript.print_str(text)
            self.transcript.new_line()
        if self.script and self.script.is_active:
            self.script.print_str(text)
            self.script.new_line()

    def set_buffer(self,b):
        self.screen.set_buffer(b)

    def flush(self):
        for stream in (self.screen,self.transcript,self.script):
            if stream:
                stream.flush()

class InputStream(object):
    """ A source of input lines/keys. Returning None means nothing is available yet """
    def __init__(self):
        self.exhausted = False

    def readline(self):
        return None

    def read_char(self):
        return None

class InputStreams(object):
    """ See section 10. Handles input """
    KEYBOARD = 0
    FILE = 1

    def __init__(self,keyboard_stream,command_file_stream=None):
        self.keyboard_stream = keyboard_stream
        self.command_file_stream = command_file_stream
        self.active_stream = keyboard_stream

    def reset(self):
        self.active_stream = self.keyboard_stream

    def select_stream(self,stream_id):
        if stream_id == InputStreams.FILE and self.command_file_stream:
            self.active_stream = self.command_file_stream
        else:
            self.active_stream = self.keyboard_stream

    def _read(self,method):
        result = getattr(self.active_stream,method)()
        if result is None and self.active_stream is self.command_file_stream and self.active_stream.exhausted:
            # Out of commands, back to the keyboard (10.2.4)
            logger.info('Command file exhausted, switching to keyboard')
            self.select_stream(InputStreams.KEYBOARD)
            result = getattr(self.active_stream,method)()
        return result

    def readline(self):
        """ Return a line of unicode text, or None if no line is ready """
        return self._read('readline')

    def read_char(self):
        """ Return a single unicode char, or None if no key is ready """
        return self._read('read_char')
