"""
pprof proto — message classes for ``perftools.profiles.Profile``.

The schema is profile.proto next to this module, a copy of
github.com/google/pprof/proto/profile.proto.  Instead of a protoc-generated
module (which needs a protoc build step), the file descriptor is assembled
here and registered in a private descriptor pool, so the classes never
clash with another copy of profile.proto in the default pool.

Exports: Profile, ValueType, Sample, Label, Mapping, Location, Line,
Function.
"""
from typing import List, Optional, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_PACKAGE = "perftools.profiles"

_FD = descriptor_pb2.FieldDescriptorProto

_INT64 = _FD.TYPE_INT64
_UINT64 = _FD.TYPE_UINT64
_BOOL = _FD.TYPE_BOOL
_STRING = _FD.TYPE_STRING
_MESSAGE = _FD.TYPE_MESSAGE

_OPTIONAL = _FD.LABEL_OPTIONAL
_REPEATED = _FD.LABEL_REPEATED

# (name, number, type, label, message type name)
_FieldSpec = Tuple[str, int, int, int, Optional[str]]

_MESSAGES: List[Tuple[str, List[_FieldSpec]]] = [
    ("Profile", [
        ("sample_type", 1, _MESSAGE, _REPEATED, "ValueType"),
        ("sample", 2, _MESSAGE, _REPEATED, "Sample"),
        ("mapping", 3, _MESSAGE, _REPEATED, "Mapping"),
        ("location", 4, _MESSAGE, _REPEATED, "Location"),
        ("function", 5, _MESSAGE, _REPEATED, "Function"),
        ("string_table", 6, _STRING, _REPEATED, None),
        ("drop_frames", 7, _INT64, _OPTIONAL, None),
        ("keep_frames", 8, _INT64, _OPTIONAL, None),
        ("time_nanos", 9, _INT64, _OPTIONAL, None),
        ("duration_nanos", 10, _INT64, _OPTIONAL, None),
        ("period_type", 11, _MESSAGE, _OPTIONAL, "ValueType"),
        ("period", 12, _INT64, _OPTIONAL, None),
        ("comment", 13, _INT64, _REPEATED, None),
        ("default_sample_type", 14, _INT64, _OPTIONAL, None),
        ("doc_url", 15, _INT64, _OPTIONAL, None),
    ]),
    ("ValueType", [
        ("type", 1, _INT64, _OPTIONAL, None),
        ("unit", 2, _INT64, _OPTIONAL, None),
    ]),
    ("Sample", [
        ("location_id", 1, _UINT64, _REPEATED, None),
        ("value", 2, _INT64, _REPEATED, None),
        ("label", 3, _MESSAGE, _REPEATED, "Label"),
    ]),
    ("Label", [
        ("key", 1, _INT64, _OPTIONAL, None),
        ("str", 2, _INT64, _OPTIONAL, None),
        ("num", 3, _INT64, _OPTIONAL, None),
        ("num_unit", 4, _INT64, _OPTIONAL, None),
    ]),
    ("Mapping", [
        ("id", 1, _UINT64, _OPTIONAL, None),
        ("memory_start", 2, _UINT64, _OPTIONAL, None),
        ("memory_limit", 3, _UINT64, _OPTIONAL, None),
        ("file_offset", 4, _UINT64, _OPTIONAL, None),
        ("filename", 5, _INT64, _OPTIONAL, None),
        ("build_id", 6, _INT64, _OPTIONAL, None),
        ("has_functions", 7, _BOOL, _OPTIONAL, None),
        ("has_filenames", 8, _BOOL, _OPTIONAL, None),
        ("has_line_numbers", 9, _BOOL, _OPTIONAL, None),
        ("has_inline_frames", 10, _BOOL, _OPTIONAL, None),
    ]),
    ("Location", [
        ("id", 1, _UINT64, _OPTIONAL, None),
        ("mapping_id", 2, _UINT64, _OPTIONAL, None),
        ("address", 3, _UINT64, _OPTIONAL, None),
        ("line", 4, _MESSAGE, _REPEATED, "Line"),
        ("is_folded", 5, _BOOL, _OPTIONAL, None),
    ]),
    ("Line", [
        ("function_id", 1, _UINT64, _OPTIONAL, None),
        ("line", 2, _INT64, _OPTIONAL, None),
        ("column", 3, _INT64, _OPTIONAL, None),
    ]),
    ("Function", [
        ("id", 1, _UINT64, _OPTIONAL, None),
        ("name", 2, _INT64, _OPTIONAL, None),
        ("system_name", 3, _INT64, _OPTIONAL, None),
        ("filename", 4, _INT64, _OPTIONAL, None),
        ("start_line", 5, _INT64, _OPTIONAL, None),
    ]),
]


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="perftools/profiles/profile.proto",
        package=_PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in _MESSAGES:
        message = file_proto.message_type.add(name=message_name)
        for name, number, field_type, label, type_name in fields:
            field = message.field.add(
                name=name,
                number=number,
                type=field_type,
                label=label,
            )
            if type_name is not None:
                field.type_name = f".{_PACKAGE}.{type_name}"
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


Profile = _message_class("Profile")
ValueType = _message_class("ValueType")
Sample = _message_class("Sample")
Label = _message_class("Label")
Mapping = _message_class("Mapping")
Location = _message_class("Location")
Line = _message_class("Line")
Function = _message_class("Function")
