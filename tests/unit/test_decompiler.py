"""Tests for the skeleton decompiler engine and symbol docs."""

from __future__ import annotations

import pytest

from tests.conftest import build_class
from vanillakit.jvm.classfile import (
    ACC_ABSTRACT,
    ACC_ENUM,
    ACC_FINAL,
    ACC_INTERFACE,
    ACC_PRIVATE,
    ACC_PUBLIC,
    ACC_STATIC,
    ACC_SUPER,
    ACC_SYNTHETIC,
    ClassFile,
)
from vanillakit.jvm.decompiler import (
    DECOMPILERS,
    SkeletonDecompiler,
    SymbolDocs,
    get_decompiler,
    placeholder_source,
)

COUNTER = build_class(
    "net/example/Counter",
    fields=[(ACC_PRIVATE, "count", "I"), (ACC_STATIC | ACC_SYNTHETIC, "$assertions", "Z")],
    methods=[(ACC_PUBLIC, "<init>", "()V"), (ACC_PUBLIC, "setCount", "(I)V")],
)


def _render(data: bytes, docs: SymbolDocs | None = None, **options) -> str:
    return SkeletonDecompiler().decompile(ClassFile.parse(data), docs or SymbolDocs(), options)


class TestSkeleton:
    def test_class_with_docs(self):
        docs = SymbolDocs(
            parameters={"net/example/Counter setCount (I)V": {"1": "value"}},
            javadoc={"c net/example/Counter": ["A counter."]},
        )
        assert _render(COUNTER, docs) == (
            "package net.example;\n"
            "\n"
            "/**\n"
            " * A counter.\n"
            " */\n"
            "public class Counter {\n"
            "    private int count;\n"
            "\n"
            "    public Counter() {\n"
            "        throw new UnsupportedOperationException();\n"
            "    }\n"
            "\n"
            "    public void setCount(int value) {\n"
            "        throw new UnsupportedOperationException();\n"
            "    }\n"
            "}\n"
        )

    def test_parameters_default_to_positional_names(self):
        source = _render(COUNTER)
        assert "public void setCount(int arg0) {" in source

    def test_static_parameter_slots(self):
        data = build_class(
            "net/example/Util",
            access=ACC_PUBLIC | ACC_SUPER | ACC_FINAL,
            methods=[(ACC_PUBLIC | ACC_STATIC, "mix", "(JI)[Ljava/lang/String;")],
        )
        docs = SymbolDocs(parameters={"net/example/Util mix (JI)[Ljava/lang/String;": {"0": "seed", "2": "rounds"}})
        source = _render(data, docs)
        assert "public final class Util {" in source
        assert "public static java.lang.String[] mix(long seed, int rounds) {" in source

    def test_private_members_hidden_on_request(self):
        source = _render(COUNTER, include_private=False)
        assert "count" not in source
        assert "$assertions" not in source

    def test_subclass_and_default_package(self):
        data = build_class("b", super_name="a", interfaces=["java/lang/Runnable"])
        source = _render(data)
        assert source.startswith("public class b extends a implements java.lang.Runnable {")

    def test_interface(self):
        data = build_class(
            "net/example/Task",
            access=ACC_PUBLIC | ACC_INTERFACE | ACC_ABSTRACT,
            interfaces=["java/lang/Runnable"],
            methods=[
                (ACC_PUBLIC | ACC_ABSTRACT, "size", "()I"),
                (ACC_PUBLIC, "describe", "()Ljava/lang/String;"),
            ],
        )
        source = _render(data)
        assert "public interface Task extends java.lang.Runnable {" in source
        assert "    int size();" in source
        assert "    default java.lang.String describe() {" in source

    def test_enum(self):
        data = build_class(
            "net/example/Mode",
            super_name="java/lang/Enum",
            access=ACC_PUBLIC | ACC_FINAL | ACC_SUPER | ACC_ENUM,
        )
        assert "public enum Mode {" in _render(data)

    def test_inner_class_uses_simple_name(self):
        source = _render(build_class("net/example/Counter$Inner"))
        assert "public class Inner {" in source


class TestSymbolDocs:
    def test_round_trip(self):
        docs = SymbolDocs({"a b ()V": {"1": "x"}}, {"c a": ["Doc."]})
        again = SymbolDocs.from_bytes(docs.to_bytes())
        assert again.parameter_name("a", "b", "()V", 1) == "x"
        assert again.doc("c", "a") == ["Doc."]

    def test_empty(self):
        docs = SymbolDocs.from_bytes(None)
        assert docs.parameter_name("a", "b", "()V", 1) is None
        assert docs.doc("c", "a") == []


class TestRegistry:
    def test_skeleton_registered(self):
        assert get_decompiler("skeleton") is DECOMPILERS["skeleton"]

    def test_unknown_engine(self):
        with pytest.raises(KeyError, match="Registered engines"):
            get_decompiler("fernflower")

    def test_placeholder_cannot_close_its_comment_early(self):
        source = placeholder_source("a.class", "bad */ input")
        assert source.count("*/") == 1
        assert "a.class" in source
