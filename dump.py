#
# Dump the header, dictionary, objects and resources for a ZCode or blorb file
#

import argparse

from zmachine.interpreter import load_story
from zmachine.errors import ZMachineException
from zmachine.instructions import read_instruction

def dump_memory(memory,start_address,length=16*10):
    for address in range(start_address,min(start_address+length,len(memory)),16):
        row = ['%.2x' % memory[i] for i in range(address,min(address+16,len(memory)))]
        print('%.8x %s' % (address,' '.join(row)))

def load(path):
    with open(path,'rb') as f:
        try:
            story = load_story(f.read())
            story.reset()
        except ZMachineException as e:
            print('Unable to load story file. %s' % e)
            return None
    return story

def dump_header(story):
    header = story.header
    print('Version:                  %d' % (header.version))
    print('Release:                  %d' % (header.release_number))
    print('Serial:                   %s' % (header.serial.decode('latin-1')))
    print('Himem address:            0x%04x' % (header.himem_address))
    print('PC Address:               0x%04x' % (header.main_routine_addr))
    print('Dictionary address:       0x%04x' % (header.dictionary_address))
    print('Object table address:     0x%04x' % (header.object_table_address))
    print('Global variables address: 0x%04x' % (header.global_variables_address))
    print('Static memory address:    0x%04x' % (header.static_memory_address))
    print('Abbrev table address:     0x%04x' % (header.abbrev_address))
    print('File length:              0x%08x' % (header.file_length()))
    print('Checksum:                 0x%04x (calculated 0x%04x)' % (header.checksum,story.calculate_checksum()))
    print('Revision number:          0x%04x' % (header.revision_number))
    print('Flags:')
    if header.flag_status_line_type == 0: print('   score/turns')
    if header.flag_status_line_type == 1: print('   hours:mins')
    if header.flag_story_two_disk: print('   two disk')
    if header.flag_status_line_not_available: print('   no status line')
    if header.flag_screen_splitting_available: print('   screen split available')
    if header.flag_variable_pitch_default: print('   variable pitch is default')

def dump_dictionary(story):
    dictionary = story.dictionary
    print('Entries       : %d' % len(dictionary))
    print('Entry length  : %d' % dictionary.entry_length)
    print('Sorted        : %s' % dictionary.is_sorted)
    print('Separators    : %s' % ' '.join([story.ztext.zscii_to_unicode(x) for x in dictionary.keyboard_codes]))
    for i,word in enumerate(dictionary.words()):
        print(' %d: %s' % (i,word))

def dump_objects(story):
    object_table = story.object_table
    for obj_id in range(1,object_table.estimate_number_of_objects()+1):
        try:
            address,length = object_table.short_name(obj_id)
            name = story.ztext.decode(story.raw_data,address,length) if length else ''
            print('%d. %s parent=%d sibling=%d child=%d' % (obj_id,name,object_table.parent(obj_id),
                                                            object_table.sibling(obj_id),object_table.child(obj_id)))
        except ZMachineException as e:
            print('%d. Error. %s' % (obj_id,e))

def dump_resources(story):
    if not story.blorb:
        print('Not a blorb')
        return
    for resource in sorted(story.blorb.resources.values(),key=lambda r: (r.usage,r.number)):
        print(resource)

def dump_instructions(story,how_many=10):
    address = story.header.main_routine_addr
    for i in range(0,how_many):
        try:
            instruction = read_instruction(story.raw_data,address,story.header.version,story.ztext)
        except ZMachineException as e:
            print('Error. %s' % e)
            return
        print('%05x %s' % (address,instruction))
        address = instruction.next_address

def dump(path,dictionary=False,objects=False,resources=False,start_address=0):
    story = load(path)
    if not story:
        return

    dump_header(story)
    print('')
    print('Raw memory\n---------\n')
    dump_memory(story.raw_data,0,0x40)
    print('')

    print('Starting instructions\n--------\n')
    dump_instructions(story)
    print('')

    if start_address:
        print('')
        print('Dumping from 0x%x' % start_address)
        dump_memory(story.raw_data,start_address)

    if dictionary:
        print('')
        print('Dictionary\n--------------\n')
        dump_dictionary(story)

    if objects:
        print('')
        print('Objects\n--------------\n')
        dump_objects(story)

    if resources:
        print('')
        print('Resources\n--------------\n')
        dump_resources(story)

def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('file')
    parser.add_argument('--dictionary',action='store_true')
    parser.add_argument('--objects',action='store_true')
    parser.add_argument('--resources',action='store_true')
    parser.add_argument('--address')
    data = parser.parse_args()
    addr_tmp = data.address or '0x00'
    if not addr_tmp.startswith('0x'):
        print('address must start with 0x')
        return
    try:
        start_address = int(addr_tmp,0)
    except ValueError:
        print('address must start with 0x and be a valid hex address')
        return
    dump(data.file,dictionary=data.dictionary,objects=data.objects,resources=data.resources,start_address=start_address)

if __name__ == "__main__":
    main()
