""" The random number generator, as specced in section 2.4 """
import logging
import os
import random

logger = logging.getLogger(__name__)

# Seeds below this enter the counting (predictable) mode rather than seeding the generator
PREDICTABLE_LIMIT = 1000

class RNG(object):
    """ The random number generator. Note that it toggles between a predictable and random mode.
        Each instance owns its own generator so nothing else in the process affects the sequence. """
    def __init__(self):
        self._random = random.Random()
        self.enter_random_mode()

    def enter_random_mode(self,seed=None):
        """ Seed from entropy, or from seed if given """
        self.predictable = False
        self.range = 0
        self.counter = 0
        if seed is None:
            seed = os.urandom(8)
        self.seed = seed
        self._random.seed(self.seed)

    def enter_predictable_mode(self,seed):
        """ Produce 1,2,...,seed,1,2... """
        self.predictable = True
        self.range = seed
        self.counter = 0
        self.seed = seed

    def reseed(self,value):
        """ Handle the random opcode's reseed forms: 0 reseeds from entropy, -n for small n counts,
            anything else seeds the generator with n """
        if value == 0:
            logger.debug('RNG reseeded from entropy')
            self.enter_random_mode()
        elif abs(value) < PREDICTABLE_LIMIT:
            logger.debug('RNG entering predictable mode with range %d' % abs(value))
            self.enter_predictable_mode(abs(value))
        else:
            logger.debug('RNG seeded with %d' % abs(value))
            self.enter_random_mode(abs(value))

    def randint(self,n):
        """ Return random integer r such that 1 <= r <= n """
        if n < 1:
            return 0
        if self.predictable:
            # Counter cycles 1..range, then is folded into 1..n
            self.counter = (self.counter % max(self.range,1)) + 1
            return ((self.counter - 1) % n) + 1
        return self._random.randint(1,n)

    # The name used by the opcode
    next = randint
