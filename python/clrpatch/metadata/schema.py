"""
Physical row layouts of the metadata tables (ECMA-335 II.22).

Each table is a fixed sequence of columns. A column is a fixed-width scalar,
a heap index, a simple row index into another table, or a coded index; the
last three have widths decided by IndexWidths.

Columns are listed in on-disk order. Changing the order or dropping a
column shifts every later table and corrupts all AssemblyRef offsets.
"""

from dataclasses import dataclass

from .index_widths import (
    CodedIndex,
    IndexWidths,
    CUSTOM_ATTRIBUTE_TYPE,
    HAS_CONSTANT,
    HAS_CUSTOM_ATTRIBUTE,
    HAS_DECL_SECURITY,
    HAS_FIELD_MARSHAL,
    HAS_SEMANTICS,
    IMPLEMENTATION,
    MEMBER_FORWARDED,
    MEMBER_REF_PARENT,
    METHOD_DEF_OR_REF,
    RESOLUTION_SCOPE,
    TYPE_DEF_OR_REF,
    TYPE_OR_METHOD_DEF,
)
from .types import (
    TABLE_ASSEMBLY,
    TABLE_ASSEMBLY_OS,
    TABLE_ASSEMBLY_PROCESSOR,
    TABLE_ASSEMBLY_REF,
    TABLE_ASSEMBLY_REF_OS,
    TABLE_ASSEMBLY_REF_PROCESSOR,
    TABLE_CLASS_LAYOUT,
    TABLE_CONSTANT,
    TABLE_CUSTOM_ATTRIBUTE,
    TABLE_DECL_SECURITY,
    TABLE_ENC_LOG,
    TABLE_ENC_MAP,
    TABLE_EVENT,
    TABLE_EVENT_MAP,
    TABLE_EVENT_PTR,
    TABLE_EXPORTED_TYPE,
    TABLE_FIELD,
    TABLE_FIELD_LAYOUT,
    TABLE_FIELD_MARSHAL,
    TABLE_FIELD_PTR,
    TABLE_FIELD_RVA,
    TABLE_FILE,
    TABLE_GENERIC_PARAM,
    TABLE_GENERIC_PARAM_CONSTRAINT,
    TABLE_IMPL_MAP,
    TABLE_INTERFACE_IMPL,
    TABLE_MANIFEST_RESOURCE,
    TABLE_MEMBER_REF,
    TABLE_METHOD_DEF,
    TABLE_METHOD_IMPL,
    TABLE_METHOD_PTR,
    TABLE_METHOD_SEMANTICS,
    TABLE_METHOD_SPEC,
    TABLE_MODULE,
    TABLE_MODULE_REF,
    TABLE_NESTED_CLASS,
    TABLE_PARAM,
    TABLE_PARAM_PTR,
    TABLE_PROPERTY,
    TABLE_PROPERTY_MAP,
    TABLE_PROPERTY_PTR,
    TABLE_STANDALONE_SIG,
    TABLE_TYPE_DEF,
    TABLE_TYPE_REF,
    TABLE_TYPE_SPEC,
)

# Column kinds
KIND_U2 = "u2"
KIND_U4 = "u4"
KIND_STRING = "string"
KIND_GUID = "guid"
KIND_BLOB = "blob"
KIND_CODED = "coded"
KIND_TABLE = "table"


@dataclass(frozen=True)
class Column:
    """One column of a metadata table row."""

    name: str
    kind: str
    target: CodedIndex | int | None = None  # CodedIndex or table id

    def width(self, widths: IndexWidths) -> int:
        """On-disk width of this column in bytes."""
        if self.kind == KIND_U2:
            return 2
        if self.kind == KIND_U4:
            return 4
        if self.kind == KIND_STRING:
            return widths.string
        if self.kind == KIND_GUID:
            return widths.guid
        if self.kind == KIND_BLOB:
            return widths.blob
        if self.kind == KIND_CODED:
            return widths.coded_width(self.target)
        if self.kind == KIND_TABLE:
            return widths.table_width(self.target)
        raise ValueError(f"Unknown column kind: {self.kind}")


@dataclass(frozen=True)
class TableLayout:
    table_id: int
    name: str
    columns: tuple[Column, ...]

    def row_size(self, widths: IndexWidths) -> int:
        return sum(column.width(widths) for column in self.columns)


def _u2(name: str) -> Column:
    return Column(name, KIND_U2)


def _u4(name: str) -> Column:
    return Column(name, KIND_U4)


def _string(name: str) -> Column:
    return Column(name, KIND_STRING)


def _guid(name: str) -> Column:
    return Column(name, KIND_GUID)


def _blob(name: str) -> Column:
    return Column(name, KIND_BLOB)


def _coded(name: str, coded_index: CodedIndex) -> Column:
    return Column(name, KIND_CODED, coded_index)


def _index(name: str, table_id: int) -> Column:
    return Column(name, KIND_TABLE, table_id)


_LAYOUTS = (
    TableLayout(
        TABLE_MODULE,
        "Module",
        (
            _u2("Generation"),
            _string("Name"),
            _guid("Mvid"),
            _guid("EncId"),
            _guid("EncBaseId"),
        ),
    ),
    TableLayout(
        TABLE_TYPE_REF,
        "TypeRef",
        (
            _coded("ResolutionScope", RESOLUTION_SCOPE),
            _string("TypeName"),
            _string("TypeNamespace"),
        ),
    ),
    TableLayout(
        TABLE_TYPE_DEF,
        "TypeDef",
        (
            _u4("Flags"),
            _string("TypeName"),
            _string("TypeNamespace"),
            _coded("Extends", TYPE_DEF_OR_REF),
            _index("FieldList", TABLE_FIELD),
            _index("MethodList", TABLE_METHOD_DEF),
        ),
    ),
    TableLayout(TABLE_FIELD_PTR, "FieldPtr", (_index("Field", TABLE_FIELD),)),
    TableLayout(
        TABLE_FIELD,
        "Field",
        (_u2("Flags"), _string("Name"), _blob("Signature")),
    ),
    TableLayout(TABLE_METHOD_PTR, "MethodPtr", (_index("Method", TABLE_METHOD_DEF),)),
    TableLayout(
        TABLE_METHOD_DEF,
        "MethodDef",
        (
            _u4("RVA"),
            _u2("ImplFlags"),
            _u2("Flags"),
            _string("Name"),
            _blob("Signature"),
            _index("ParamList", TABLE_PARAM),
        ),
    ),
    TableLayout(TABLE_PARAM_PTR, "ParamPtr", (_index("Param", TABLE_PARAM),)),
    TableLayout(
        TABLE_PARAM,
        "Param",
        (_u2("Flags"), _u2("Sequence"), _string("Name")),
    ),
    TableLayout(
        TABLE_INTERFACE_IMPL,
        "InterfaceImpl",
        (_index("Class", TABLE_TYPE_DEF), _coded("Interface", TYPE_DEF_OR_REF)),
    ),
    TableLayout(
        TABLE_MEMBER_REF,
        "MemberRef",
        (
            _coded("Class", MEMBER_REF_PARENT),
            _string("Name"),
            _blob("Signature"),
        ),
    ),
    TableLayout(
        TABLE_CONSTANT,
        "Constant",
        (
            _u2("Type"),  # u1 type + u1 padding
            _coded("Parent", HAS_CONSTANT),
            _blob("Value"),
        ),
    ),
    TableLayout(
        TABLE_CUSTOM_ATTRIBUTE,
        "CustomAttribute",
        (
            _coded("Parent", HAS_CUSTOM_ATTRIBUTE),
            _coded("Type", CUSTOM_ATTRIBUTE_TYPE),
            _blob("Value"),
        ),
    ),
    TableLayout(
        TABLE_FIELD_MARSHAL,
        "FieldMarshal",
        (_coded("Parent", HAS_FIELD_MARSHAL), _blob("NativeType")),
    ),
    TableLayout(
        TABLE_DECL_SECURITY,
        "DeclSecurity",
        (
            _u2("Action"),
            _coded("Parent", HAS_DECL_SECURITY),
            _blob("PermissionSet"),
        ),
    ),
    TableLayout(
        TABLE_CLASS_LAYOUT,
        "ClassLayout",
        (_u2("PackingSize"), _u4("ClassSize"), _index("Parent", TABLE_TYPE_DEF)),
    ),
    TableLayout(
        TABLE_FIELD_LAYOUT,
        "FieldLayout",
        (_u4("Offset"), _index("Field", TABLE_FIELD)),
    ),
    TableLayout(TABLE_STANDALONE_SIG, "StandAloneSig", (_blob("Signature"),)),
    TableLayout(
        TABLE_EVENT_MAP,
        "EventMap",
        (_index("Parent", TABLE_TYPE_DEF), _index("EventList", TABLE_EVENT)),
    ),
    TableLayout(TABLE_EVENT_PTR, "EventPtr", (_index("Event", TABLE_EVENT),)),
    TableLayout(
        TABLE_EVENT,
        "Event",
        (
            _u2("EventFlags"),
            _string("Name"),
            _coded("EventType", TYPE_DEF_OR_REF),
        ),
    ),
    TableLayout(
        TABLE_PROPERTY_MAP,
        "PropertyMap",
        (_index("Parent", TABLE_TYPE_DEF), _index("PropertyList", TABLE_PROPERTY)),
    ),
    TableLayout(TABLE_PROPERTY_PTR, "PropertyPtr", (_index("Property", TABLE_PROPERTY),)),
    TableLayout(
        TABLE_PROPERTY,
        "Property",
        (_u2("Flags"), _string("Name"), _blob("Type")),
    ),
    TableLayout(
        TABLE_METHOD_SEMANTICS,
        "MethodSemantics",
        (
            _u2("Semantics"),
            _index("Method", TABLE_METHOD_DEF),
            _coded("Association", HAS_SEMANTICS),
        ),
    ),
    TableLayout(
        TABLE_METHOD_IMPL,
        "MethodImpl",
        (
            _index("Class", TABLE_TYPE_DEF),
            _coded("MethodBody", METHOD_DEF_OR_REF),
            _coded("MethodDeclaration", METHOD_DEF_OR_REF),
        ),
    ),
    TableLayout(TABLE_MODULE_REF, "ModuleRef", (_string("Name"),)),
    TableLayout(TABLE_TYPE_SPEC, "TypeSpec", (_blob("Signature"),)),
    TableLayout(
        TABLE_IMPL_MAP,
        "ImplMap",
        (
            _u2("MappingFlags"),
            _coded("MemberForwarded", MEMBER_FORWARDED),
            _string("ImportName"),
            _index("ImportScope", TABLE_MODULE_REF),
        ),
    ),
    TableLayout(
        TABLE_FIELD_RVA,
        "FieldRVA",
        (_u4("RVA"), _index("Field", TABLE_FIELD)),
    ),
    TableLayout(TABLE_ENC_LOG, "ENCLog", (_u4("Token"), _u4("FuncCode"))),
    TableLayout(TABLE_ENC_MAP, "ENCMap", (_u4("Token"),)),
    TableLayout(
        TABLE_ASSEMBLY,
        "Assembly",
        (
            _u4("HashAlgId"),
            _u2("MajorVersion"),
            _u2("MinorVersion"),
            _u2("BuildNumber"),
            _u2("RevisionNumber"),
            _u4("Flags"),
            _blob("PublicKey"),
            _string("Name"),
            _string("Culture"),
        ),
    ),
    TableLayout(TABLE_ASSEMBLY_PROCESSOR, "AssemblyProcessor", (_u4("Processor"),)),
    TableLayout(
        TABLE_ASSEMBLY_OS,
        "AssemblyOS",
        (_u4("OSPlatformID"), _u4("OSMajorVersion"), _u4("OSMinorVersion")),
    ),
    TableLayout(
        TABLE_ASSEMBLY_REF,
        "AssemblyRef",
        (
            _u2("MajorVersion"),
            _u2("MinorVersion"),
            _u2("BuildNumber"),
            _u2("RevisionNumber"),
            _u4("Flags"),
            _blob("PublicKeyOrToken"),
            _string("Name"),
            _string("Culture"),
            _blob("HashValue"),
        ),
    ),
    TableLayout(
        TABLE_ASSEMBLY_REF_PROCESSOR,
        "AssemblyRefProcessor",
        (_u4("Processor"), _index("AssemblyRef", TABLE_ASSEMBLY_REF)),
    ),
    TableLayout(
        TABLE_ASSEMBLY_REF_OS,
        "AssemblyRefOS",
        (
            _u4("OSPlatformId"),
            _u4("OSMajorVersion"),
            _u4("OSMinorVersion"),
            _index("AssemblyRef", TABLE_ASSEMBLY_REF),
        ),
    ),
    TableLayout(
        TABLE_FILE,
        "File",
        (_u4("Flags"), _string("Name"), _blob("HashValue")),
    ),
    TableLayout(
        TABLE_EXPORTED_TYPE,
        "ExportedType",
        (
            _u4("Flags"),
            _u4("TypeDefId"),  # Row in another module, always 4 bytes
            _string("TypeName"),
            _string("TypeNamespace"),
            _coded("Implementation", IMPLEMENTATION),
        ),
    ),
    TableLayout(
        TABLE_MANIFEST_RESOURCE,
        "ManifestResource",
        (
            _u4("Offset"),
            _u4("Flags"),
            _string("Name"),
            _coded("Implementation", IMPLEMENTATION),
        ),
    ),
    TableLayout(
        TABLE_NESTED_CLASS,
        "NestedClass",
        (
            _index("NestedClass", TABLE_TYPE_DEF),
            _index("EnclosingClass", TABLE_TYPE_DEF),
        ),
    ),
    TableLayout(
        TABLE_GENERIC_PARAM,
        "GenericParam",
        (
            _u2("Number"),
            _u2("Flags"),
            _coded("Owner", TYPE_OR_METHOD_DEF),
            _string("Name"),
        ),
    ),
    TableLayout(
        TABLE_METHOD_SPEC,
        "MethodSpec",
        (_coded("Method", METHOD_DEF_OR_REF), _blob("Instantiation")),
    ),
    TableLayout(
        TABLE_GENERIC_PARAM_CONSTRAINT,
        "GenericParamConstraint",
        (
            _index("Owner", TABLE_GENERIC_PARAM),
            _coded("Constraint", TYPE_DEF_OR_REF),
        ),
    ),
)

TABLE_LAYOUTS: dict[int, TableLayout] = {layout.table_id: layout for layout in _LAYOUTS}


def get_layout(table_id: int) -> TableLayout | None:
    """Layout for a table id, or None if the id is not a known table."""
    return TABLE_LAYOUTS.get(table_id)


def table_name(table_id: int) -> str:
    layout = TABLE_LAYOUTS.get(table_id)
    return layout.name if layout else f"Table0x{table_id:02x}"
