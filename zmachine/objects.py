""" The object table (see section 12). Objects live in a flat table in dynamic memory and link
    to each other by number, so every operation here is done directly against addresses and
    is validated against the table bounds rather than following references. """

from zmachine.errors import ObjectException

class ObjectTableManager(object):
    """ Handles the object table (see section 12.1). Requests to the table pass through to memory,
        since we don't know for sure where the object table ends. """

    def __init__(self,memory,object_table_address,config):
        self.game_memory = memory
        self.config = config
        self.version = config.version
        self.object_table_address = object_table_address
        if self.version < 4:
            self.attribute_bytes = 4
            self.parent_offset,self.sibling_offset,self.child_offset = 4,5,6
            self.property_address_offset = 7
        else:
            self.attribute_bytes = 6
            self.parent_offset,self.sibling_offset,self.child_offset = 6,8,10
            self.property_address_offset = 12
        self.reset()

    def reset(self):
        self.objects_start_address = self.object_table_address + (2*self.config.property_default_count)

    ### Defaults (12.2)

    def default_property_address(self,property_number):
        self._check_property_number(property_number)
        return self.object_table_address + ((property_number-1)*2)

    def get_default_property(self,property_number):
        return self.game_memory.word(self.default_property_address(property_number))

    ### Object records

    def _obj_start_addr(self,object_number):
        if not self.is_valid_object_id(object_number):
            raise ObjectException('Invalid object number %d' % object_number)
        return self.objects_start_address + (self.config.object_entry_size * (object_number-1))

    def is_valid_object_id(self,obj_id):
        return obj_id >= 1 and obj_id <= self.config.max_object

    def estimate_number_of_objects(self):
        """ Grab the first object and use its property table start as the assumed end of the
            object table, the work backwards. No guarantee to work! """
        addr = self.property_table_address(1)
        count = (addr - self.objects_start_address)//self.config.object_entry_size
        if count < 0 or count > self.config.max_object:
            return 0 # Something's wrong, just return no objects
        return count

    def _get_link(self,obj_id,offset):
        address = self._obj_start_addr(obj_id) + offset
        if self.version < 4:
            return self.game_memory[address]
        return self.game_memory.word(address)

    def _set_link(self,obj_id,offset,value):
        address = self._obj_start_addr(obj_id) + offset
        if self.version < 4:
            self.game_memory[address] = value
        else:
            self.game_memory.set_word(address,value)

    def parent(self,obj_id):
        return self._get_link(obj_id,self.parent_offset)

    def sibling(self,obj_id):
        return self._get_link(obj_id,self.sibling_offset)

    def child(self,obj_id):
        return self._get_link(obj_id,self.child_offset)

    def is_child_of(self,child_obj_id,parent_obj_id):
        """ Return True if child_obj is child of parent_obj """
        return self.parent(child_obj_id) == parent_obj_id

    ### Attributes (12.3)

    def _find_attribute_start_byte(self,object_number,attribute_number):
        """ Given an object and an attribute number, return the byte address and bit within that byte.
            For example, attribute 0 will return start_addr,0 while attribute 8 will
            return start_addr+1,0 """
        if attribute_number < 0 or attribute_number >= self.config.attribute_count:
            raise ObjectException('Invalid attribute number %d on object %d' % (attribute_number,object_number))
        address = self._obj_start_addr(object_number)
        return address + (attribute_number // 8), attribute_number % 8

    def attribute(self,object_number,attribute_number):
        """ Return true if attribute # attr_number is set on object number object_number """
        address,bit = self._find_attribute_start_byte(object_number,attribute_number)
        return (self.game_memory[address] >> (7-bit)) & 0x01 == 1

    def set_attribute(self,object_number,attribute_number):
        address,bit = self._find_attribute_start_byte(object_number,attribute_number)
        self.game_memory[address] = self.game_memory[address] | (0x80 >> bit)

    def clear_attribute(self,object_number,attribute_number):
        address,bit = self._find_attribute_start_byte(object_number,attribute_number)
        self.game_memory[address] = self.game_memory[address] & ((0x80 >> bit) ^ 0xff)

    ### Tree

    def remove(self,obj_id):
        """ Remove this object from its parent (leaving its children) """
        parent_id = self.parent(obj_id)
        if not parent_id:
            return
        sibling_id = self.sibling(obj_id)
        child_obj_id = self.child(parent_id)
        if child_obj_id == obj_id:
            self._set_link(parent_id,self.child_offset,sibling_id)
        else:
            # Walk the sibling chain to find our older sibling and splice around ourselves
            steps = 0
            while child_obj_id:
                next_id = self.sibling(child_obj_id)
                if next_id == obj_id:
                    self._set_link(child_obj_id,self.sibling_offset,sibling_id)
                    break
                child_obj_id = next_id
                steps+=1
                if steps > self.config.max_object:
                    raise ObjectException('Sibling chain of object %d does not terminate' % parent_id)
            else:
                raise ObjectException('Object %d is not in the child list of its parent %d' % (obj_id,parent_id))

        self._set_link(obj_id,self.parent_offset,0)
        self._set_link(obj_id,self.sibling_offset,0)

    def insert(self,obj_id,parent_id):
        """ Insert the obj obj_id at the front of parent_id's children """
        # Validate both before touching anything
        self._obj_start_addr(obj_id)
        self._obj_start_addr(parent_id)
        ancestor = parent_id
        steps = 0
        while ancestor:
            if ancestor == obj_id:
                raise ObjectException('Cannot insert object %d into its own descendant %d' % (obj_id,parent_id))
            ancestor = self.parent(ancestor)
            steps+=1
            if steps > self.config.max_object:
                raise ObjectException('Parent chain of object %d does not terminate' % parent_id)

        self.remove(obj_id)
        self._set_link(obj_id,self.parent_offset,parent_id)
        self._set_link(obj_id,self.sibling_offset,self.child(parent_id))
        self._set_link(parent_id,self.child_offset,obj_id)

    ### Properties (12.4)

    def _check_property_number(self,property_number):
        if property_number < 1 or property_number > self.config.max_property:
            raise ObjectException('Invalid property number %d' % property_number)

    def property_table_address(self,obj_id):
        return self.game_memory.word(self._obj_start_addr(obj_id) + self.property_address_offset)

    def short_name(self,obj_id):
        """ Return the address and length in bytes of the encoded short name. Decoding is up to the caller """
        address = self.property_table_address(obj_id)
        return address+1, self.game_memory[address]*2

    def _extract_property_info(self,size_addr):
        """ Return property number, data size and data address for the size byte(s) at the address.
            Property number 0 means the end of the list """
        size_byte = self.game_memory[size_addr]
        if self.version < 4:
            return size_byte & 0x1F, ((size_byte & 0xE0) >> 5) + 1, size_addr+1
        property_number = size_byte & 0x3F
        if size_byte & 0x80:
            # 12.4.2.1
            property_size = self.game_memory[size_addr+1] & 0x3F
            if property_size == 0:
                property_size = 64
            return property_number, property_size, size_addr+2
        return property_number, 2 if size_byte & 0x40 else 1, size_addr+1

    def properties(self,obj_id):
        """ Return a list of (property number, data address, size) for the object, in table order """
        address,name_length = self.short_name(obj_id)
        size_addr = address + name_length
        found = []
        while True:
            property_number,property_size,data_addr = self._extract_property_info(size_addr)
            if property_number == 0:
                break
            found.append((property_number,data_addr,property_size))
            size_addr = data_addr + property_size
            if len(found) > self.config.max_property:
                raise ObjectException('Property list of object %d does not terminate' % obj_id)
        return found

    def property_address(self,obj_id,property_id):
        """ Return the data address of the given property, or 0 if the object lacks it """
        self._check_property_number(property_id)
        for property_number,data_addr,size in self.properties(obj_id):
            if property_number == property_id:
                return data_addr
        return 0

    def property(self,obj_id,property_id):
        """ Return (address, length) of the property data, falling back to the defaults table """
        self._check_property_number(property_id)
        for property_number,data_addr,size in self.properties(obj_id):
            if property_number == property_id:
                return data_addr,size
        return self.default_property_address(property_id),2

    def get_property_length(self,prop_addr):
        """ Return the length of the property whose data starts at the given address """
        if prop_addr == 0:
            return 0
        # The size byte is _behind_ the property address
        size_byte = self.game_memory[prop_addr-1]
        if self.version < 4:
            return ((size_byte & 0xE0) >> 5) + 1
        if size_byte & 0x80:
            return (size_byte & 0x3F) or 64
        return 2 if size_byte & 0x40 else 1

    def get_prop(self,obj_id,property_id):
        """ Return the value of the property as a byte or word """
        address,size = self.property(obj_id,property_id)
        if size == 1:
            return self.game_memory[address]
        if size == 2:
            return self.game_memory.word(address)
        raise ObjectException('get_prop on property %d of object %d with length %d' % (property_id,obj_id,size))

    def get_next_prop(self,obj_id,property_id):
        """ Find the property after the identified property. If 0, first property. If property
            is last property, return 0. If no such property, error """
        ids = [p[0] for p in self.properties(obj_id)]
        if property_id == 0:
            return ids[0] if ids else 0
        if property_id not in ids:
            raise ObjectException('No property %d for object id %d' % (property_id,obj_id))
        idx = ids.index(property_id)
        if idx + 1 < len(ids):
            return ids[idx+1]
        return 0

    def put_prop(self,obj_id,property_id,value):
        """ Store a property in the property table """
        prop_addr = self.property_address(obj_id,property_id)
        if not prop_addr:
            raise ObjectException('Request to set non-existent property %d of obj %d to %d.' % (property_id,obj_id,value))
        prop_len = self.get_property_length(prop_addr)
        if prop_len == 1:
            self.game_memory[prop_addr] = value & 0xFF
        elif prop_len == 2:
            self.game_memory.set_word(prop_addr,value)
        else:
            raise ObjectException('Request to set property %d of obj %d which is %d bytes long.' % (property_id,obj_id,prop_len))

    def __getitem__(self,key):
        """ Get a summary of the nth object, for debugging and dump tools """
        start_addr = self._obj_start_addr(key)
        name_address,name_length = self.short_name(key)
        return {'attributes': [n for n in range(0,self.config.attribute_count) if self.attribute(key,n)],
                'parent': self.parent(key),
                'sibling': self.sibling(key),
                'child': self.child(key),
                'address': start_addr,
                'property_address': self.property_table_address(key),
                'short_name_address': name_address,
                'short_name_length': name_length,
                'properties': dict((n,bytes(self.game_memory[a:a+s])) for n,a,s in self.properties(key)),
                }
