"""Tests for Go source inspection helpers."""

from utils.go_source import extract_type_definitions, non_std_imports, parse_imports

GENERATED = '''// Code generated by protoc-gen-go. DO NOT EDIT.
package protobufs

import (
	protoreflect "google.golang.org/protobuf/reflect/protoreflect"
	sync "sync"
)

type EchoRequest struct {
	state         protoimpl.MessageState
	Message string `protobuf:"bytes,1,opt,name=message,proto3" json:"message,omitempty"`
}

func (x *EchoRequest) Reset() {}

type EchoServer interface {
	// Echo returns the message } unchanged
	Echo(context.Context, *EchoRequest) (*EchoResponse, error)
	mustEmbedUnimplementedEchoServer()
}

type Alias = string
'''


def test_extract_struct_and_interface():
    defs = extract_type_definitions(GENERATED)
    assert len(defs) == 2
    assert defs[0].startswith("type EchoRequest struct {")
    assert defs[0].endswith("}")
    assert "json:\"message,omitempty\"" in defs[0]
    assert defs[1].startswith("type EchoServer interface {")
    assert "mustEmbedUnimplementedEchoServer()" in defs[1]


def test_unbalanced_declaration_skipped():
    assert extract_type_definitions("type Broken struct {\n\tA int\n") == []


def test_parse_imports_block_and_single():
    source = 'package main\n\nimport "fmt"\nimport log "github.com/sirupsen/logrus"\n\nimport (\n\t"net/http"\n\tpb "echo/protobufs"\n\t_ "github.com/lib/pq"\n)\n'
    assert parse_imports(source) == [
        "fmt",
        "github.com/sirupsen/logrus",
        "net/http",
        "echo/protobufs",
        "github.com/lib/pq",
    ]


def test_non_std_imports():
    source = 'import (\n\t"fmt"\n\t"./local"\n\t"github.com/acme/widgets"\n\t"golang.org/x/text/language"\n)'
    assert non_std_imports(source) == ["github.com/acme/widgets", "golang.org/x/text/language"]
