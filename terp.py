import sys
import os
import logging
import argparse
import datetime

from zmachine.interpreter import Interpreter,load_story
from zmachine.errors import ZMachineException,ConfigException
from zmachine.config import Config,DEFAULT_CONFIG_PATH
from zmachine.io import OutputStreams,InputStreams

from generic_terp import STDOUTScreen,STDINInputStream,FileInputStream,FileOutputStream,\
                         FileSaveHandler,FileRestoreHandler

LOG_FILENAME = 'zmachine.log'

class MainLoop(object):
    """ Run a story on the console, blocking on standard in whenever the game reads """
    def __init__(self,path,config,commands_path=None,seed=None,transcript_path=None,save_path=None):
        self.path = path
        self.config = config
        self.commands_path = commands_path
        self.seed=seed
        self.transcript_path=transcript_path
        self.save_path = save_path

    def prompt(self,message):
        self.screen.print_str(message)
        self.screen.flush()
        return self.keyboard.readline()

    def build(self):
        self.screen = STDOUTScreen()
        self.keyboard = STDINInputStream()

        transcript = script = None
        if self.transcript_path:
            if not self.transcript_path.endswith('.transcript'):
                raise ConfigException('All transcripts must end with the .transcript extension')
            if os.path.isdir(self.transcript_path):
                raise ConfigException('Transcript path must be to a file that ends in .transcript')
            transcript = FileOutputStream(self.transcript_path)
            transcript.print_str('--- Game started at %s ----\n\n' % datetime.datetime.now())
            transcript.flush()

            # Commands go to a separate script file
            script = FileOutputStream(self.transcript_path + '.commands')

        command_file_stream = None
        if self.commands_path:
            command_file_stream = FileInputStream(self.screen)
            command_file_stream.load_from_path(self.commands_path)

        with open(self.path,'rb') as f:
            story = load_story(f.read())

        zmachine = Interpreter(story,
                               OutputStreams(self.screen,transcript,script),
                               InputStreams(self.keyboard,command_file_stream),
                               FileSaveHandler(self.save_path,self.prompt),
                               FileRestoreHandler(self.save_path,self.prompt),
                               screen=self.screen,
                               config=self.config)
        zmachine.reset()
        if transcript:
            zmachine.header.flag_transcript = True
        if script:
            zmachine.output_streams.select_stream(OutputStreams.SCRIPT)
        if command_file_stream:
            zmachine.input_streams.select_stream(InputStreams.FILE)
        if self.seed is not None:
            zmachine.rng.reseed(-int(self.seed))
        return zmachine

    def loop(self):
        zmachine = self.build()
        while zmachine.state != Interpreter.HALTED_STATE:
            zmachine.step()
            if zmachine.awaiting_input and self.keyboard.exhausted:
                # End of standard in
                zmachine.quit()
        if zmachine.fault:
            print('\n%s [%s]' % (zmachine.fault,zmachine.last_instruction))
            return 1
        return 0

def configure_logging(config,level=None):
    if level:
        logging.basicConfig(level=getattr(logging,level.upper()))
    elif config.logging:
        logging.basicConfig(filename=LOG_FILENAME,level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

def main(*args):
    parser = argparse.ArgumentParser()
    parser.add_argument('story',help='Story (or blorb) file to play')
    parser.add_argument('--config',help='Path to YAML configuration',required=False,default=DEFAULT_CONFIG_PATH)
    parser.add_argument('--commands_path',help='Path to optional command file',required=False)
    parser.add_argument('--save_path',help='Path to directory for saves. Will default to /tmp',required=False,default='/tmp')
    parser.add_argument('--transcript_path',help='Path for transcript. This will also activate transcript by default. A separate commands transcript will also automatically be created.',required=False)
    parser.add_argument('--seed',help='Optional seed for RNG',required=False)
    parser.add_argument('--log-level',help='Log to stderr at this level',required=False)
    data = parser.parse_args(list(args) or None)

    try:
        config = Config.from_file(data.config)
        configure_logging(config,data.log_level)
        result = MainLoop(data.story,
                          config,
                          commands_path=data.commands_path,
                          seed=data.seed,
                          transcript_path=data.transcript_path,
                          save_path=data.save_path).loop()
    except ConfigException as e:
        print(e)
        return 2
    except ZMachineException as e:
        print('Unable to start: %s' % e)
        return 1
    except OSError as e:
        print(e)
        return 1

    print("Thanks for playing!")
    return result

if __name__ == "__main__":
    sys.exit(main())
