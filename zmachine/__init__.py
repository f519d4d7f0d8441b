#
# See http://inform-fiction.org/zmachine/standards/z1point1/index.html for a definition of the Z-Machine
#
from zmachine.interpreter import Story,Interpreter,InputRequest,load_story
from zmachine.config import Config
from zmachine.errors import ZMachineException,StoryFileException,ErrorPolicy

__version__ = '1.0.0'
