"""A minimal Java class file reader that collects the classes a class file references."""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field

CLASS_MAGIC = 0xCAFEBABE

# constant pool tags
CONSTANT_UTF8 = 1
CONSTANT_INTEGER = 3
CONSTANT_FLOAT = 4
CONSTANT_LONG = 5
CONSTANT_DOUBLE = 6
CONSTANT_CLASS = 7
CONSTANT_STRING = 8
CONSTANT_FIELDREF = 9
CONSTANT_METHODREF = 10
CONSTANT_INTERFACE_METHODREF = 11
CONSTANT_NAME_AND_TYPE = 12
CONSTANT_METHOD_HANDLE = 15
CONSTANT_METHOD_TYPE = 16
CONSTANT_DYNAMIC = 17
CONSTANT_INVOKE_DYNAMIC = 18
CONSTANT_MODULE = 19
CONSTANT_PACKAGE = 20

# payload size in bytes for every fixed-width tag
_FIXED_SIZES: dict[int, int] = {
    CONSTANT_INTEGER: 4,
    CONSTANT_FLOAT: 4,
    CONSTANT_LONG: 8,
    CONSTANT_DOUBLE: 8,
    CONSTANT_CLASS: 2,
    CONSTANT_STRING: 2,
    CONSTANT_FIELDREF: 4,
    CONSTANT_METHODREF: 4,
    CONSTANT_INTERFACE_METHODREF: 4,
    CONSTANT_NAME_AND_TYPE: 4,
    CONSTANT_METHOD_HANDLE: 3,
    CONSTANT_METHOD_TYPE: 2,
    CONSTANT_DYNAMIC: 4,
    CONSTANT_INVOKE_DYNAMIC: 4,
    CONSTANT_MODULE: 2,
    CONSTANT_PACKAGE: 2,
}

_OBJECT_TYPE = re.compile(r"L([^;<>]+)[;<]")


class ClassFormatError(ValueError):
    """The bytes are not a well-formed class file."""


@dataclass
class ClassInfo:
    """What `read_class` extracts from a class file. Names use the internal `org/example/Name` form."""

    name: str
    super_name: str | None
    interfaces: list[str] = field(default_factory=list)
    references: set[str] = field(default_factory=set)
    major_version: int = 0


def descriptor_types(descriptor: str) -> set[str]:
    """Return the internal names of every object type mentioned in a field or method descriptor.

    Examples:
        >>> sorted(descriptor_types("(Ljava/lang/String;[Lorg/example/A;I)V"))
        ['java/lang/String', 'org/example/A']

    """
    return set(_OBJECT_TYPE.findall(descriptor))


def class_entry_types(name: str) -> set[str]:
    """Unwrap a CONSTANT_Class name, which is an array descriptor for array types."""
    if name.startswith("["):
        return descriptor_types(name)
    return {name}


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            msg = f"truncated class file: needed {size} bytes at offset {self.offset}"
            raise ClassFormatError(msg)
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def u1(self) -> int:
        return self.take(1)[0]

    def u2(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u4(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def skip_attributes(self) -> None:
        for _ in range(self.u2()):
            self.u2()  # attribute_name_index
            self.take(self.u4())


def read_class(data: bytes) -> ClassInfo:  # noqa: C901
    """Parse a class file and collect the names of all classes it references.

    References come from `CONSTANT_Class` entries (which include the class itself, its super class and interfaces),
    from `NameAndType` and `MethodType` descriptors, and from the descriptors of declared fields and methods.

    Raises:
        ClassFormatError: if `data` is not a well-formed class file

    """
    reader = _Reader(data)
    if reader.u4() != CLASS_MAGIC:
        msg = "bad magic number, not a class file"
        raise ClassFormatError(msg)
    reader.u2()  # minor version
    major_version = reader.u2()

    pool_count = reader.u2()
    utf8: dict[int, str] = {}
    class_indexes: dict[int, int] = {}
    descriptor_indexes: list[int] = []
    index = 1
    while index < pool_count:
        tag = reader.u1()
        if tag == CONSTANT_UTF8:
            raw = reader.take(reader.u2())
            # modified UTF-8 only differs from UTF-8 for NUL and supplementary characters
            utf8[index] = raw.decode("utf-8", errors="replace")
        elif tag == CONSTANT_CLASS:
            class_indexes[index] = reader.u2()
        elif tag == CONSTANT_NAME_AND_TYPE:
            reader.u2()
            descriptor_indexes.append(reader.u2())
        elif tag == CONSTANT_METHOD_TYPE:
            descriptor_indexes.append(reader.u2())
        elif tag in _FIXED_SIZES:
            reader.take(_FIXED_SIZES[tag])
        else:
            msg = f"unknown constant pool tag {tag} at index {index}"
            raise ClassFormatError(msg)
        # 8-byte constants take up two slots
        index += 2 if tag in (CONSTANT_LONG, CONSTANT_DOUBLE) else 1

    def utf8_at(i: int) -> str:
        try:
            return utf8[i]
        except KeyError:
            msg = f"constant pool index {i} is not a UTF-8 entry"
            raise ClassFormatError(msg) from None

    def class_at(i: int) -> str:
        try:
            return utf8_at(class_indexes[i])
        except KeyError:
            msg = f"constant pool index {i} is not a class entry"
            raise ClassFormatError(msg) from None

    reader.u2()  # access flags
    name = class_at(reader.u2())
    super_index = reader.u2()
    super_name = class_at(super_index) if super_index else None
    interfaces = [class_at(reader.u2()) for _ in range(reader.u2())]

    for _ in range(2):  # fields, then methods
        for _ in range(reader.u2()):
            reader.u2()  # access flags
            reader.u2()  # name
            descriptor_indexes.append(reader.u2())
            reader.skip_attributes()
    reader.skip_attributes()

    references: set[str] = set()
    for name_index in class_indexes.values():
        references |= class_entry_types(utf8_at(name_index))
    for descriptor_index in descriptor_indexes:
        references |= descriptor_types(utf8_at(descriptor_index))

    return ClassInfo(
        name=name,
        super_name=super_name,
        interfaces=interfaces,
        references=references,
        major_version=major_version,
    )
