""" Console streams and save handlers shared by the terps: standard in/out, command files,
    transcripts and save files on disk """
import logging
import os
import sys

from zmachine.errors import ConfigException
from zmachine.io import Screen,OutputStream,InputStream

logger = logging.getLogger(__name__)

class FileInputStream(InputStream):
    """ Input stream for handling commands stored in a file """
    def __init__(self,output_stream=None,add_newline=True):
        super(FileInputStream,self).__init__()
        self.commands = []
        self.index = -1
        self.output_stream=output_stream
        self.add_newline = add_newline

    def load_from_path(self,path):
        with open(path,'r') as f:
            for line in f:
                self.commands.append(line.strip())

    def readline(self):
        self.index += 1
        try:
            command = self.commands[self.index]
        except IndexError:
            self.exhausted = True
            return None

        # Echo, as if typed
        if self.output_stream:
            self.output_stream.print_str(command)
            if self.add_newline:
                self.output_stream.new_line()
        return command

    def read_char(self):
        command = self.readline()
        if command is None:
            return None
        return command[0:1] or '\n'

class STDINInputStream(InputStream):
    """ Blocking keyboard input from standard in """
    def __init__(self,stream=None):
        super(STDINInputStream,self).__init__()
        self.stream = stream or sys.stdin

    def readline(self):
        line = self.stream.readline()
        if not line:
            # End of input, which the terp treats as a quit
            self.exhausted = True
            return None
        return line.rstrip('\r\n')

    def read_char(self):
        line = self.readline()
        if line is None:
            return None
        return line[0:1] or '\n'

class STDOUTScreen(Screen):
    """ Screen that writes the lower window to standard out. The status line is printed
        as a line of its own, since there is no upper window """
    def __init__(self,stream=None,lines=25,columns=80):
        super(STDOUTScreen,self).__init__(lines=lines,columns=columns)
        self.stream = stream or sys.stdout

    def new_line(self):
        if self.window == 0:
            self.stream.write('\n')

    def print_str(self,txt):
        if self.window == 0:
            self.stream.write(txt)

    def flush(self):
        self.stream.flush()

    def show_status(self,room_name,score_mode=True,hours=0,minutes=0,score=0,turns=0):
        if score_mode:
            right = 'Score: %d  Turns: %d' % (score,turns)
        else:
            right = 'Time: %d:%02d' % (hours,minutes)
        width = max(self.columns - len(right) - 1,1)
        self.stream.write('[%s %s]\n' % (room_name[0:width].ljust(width),right))

class FileOutputStream(OutputStream):
    def __init__(self,path):
        super(FileOutputStream,self).__init__()
        self.buffer = ''
        self.path = path

    def flush(self):
        if not self.buffer:
            return
        with open(self.path,'a') as f:
            f.write(str(self.buffer.encode('ascii','replace'),'ascii'))
        self.buffer = ''

    def new_line(self):
        self.buffer += '\n'

    def print_str(self,txt):
        self.buffer += str(txt)

class StringIOOutputStream(OutputStream):
    def __init__(self,io_stream):
        self.io_stream = io_stream
        super(StringIOOutputStream,self).__init__()

    def new_line(self):
        self.io_stream.write('\n')

    def print_str(self,txt):
        self.io_stream.write(txt)

class StringIOScreen(Screen):
    """ Screen capturing everything printed to the lower window, and status line updates """
    def __init__(self,io_stream,lines=25,columns=80):
        super(StringIOScreen,self).__init__(lines=lines,columns=columns)
        self.io_stream = io_stream
        self.statuses = []

    def new_line(self):
        if self.window == 0:
            self.io_stream.write('\n')

    def print_str(self,txt):
        if self.window == 0:
            self.io_stream.write(txt)

    def show_status(self,room_name,score_mode=True,hours=0,minutes=0,score=0,turns=0):
        self.statuses.append((room_name,score_mode,hours,minutes,score,turns))

class FileSaveHandler(object):
    """ Saves go to a named file in the save directory. prompt_f is called to get the name """
    EXTENSION = '.qzl'

    def __init__(self,save_path,prompt_f):
        if not os.path.isdir(save_path):
            raise ConfigException('Save path %s is not a directory' % save_path)
        self.save_path = save_path
        self.prompt_f = prompt_f

    def path_for(self,name):
        name = os.path.basename(name.strip())
        if not name:
            return None
        if not name.endswith(FileSaveHandler.EXTENSION):
            name += FileSaveHandler.EXTENSION
        return os.path.join(self.save_path,name)

    def save(self,data):
        path = self.path_for(self.prompt_f('Name of file for save (in %s)? ' % self.save_path) or '')
        if not path:
            return False
        with open(path,'wb') as f:
            f.write(data)
        logger.info('Saved to %s' % path)
        return True

class FileRestoreHandler(FileSaveHandler):
    def restore(self):
        path = self.path_for(self.prompt_f('Name of file for restore (in %s)? ' % self.save_path) or '')
        if not path or not os.path.exists(path):
            logger.info('No save at %s' % path)
            return None
        with open(path,'rb') as f:
            return f.read()
