from __future__ import annotations

import textwrap

from nightshift_mcp.index.parser import extract_elements, extract_keywords


def test_keywords_include_identifier_parts() -> None:
    keywords = extract_keywords("def parseHttpResponse(raw_payload): return raw_payload")

    assert {"parsehttpresponse", "parse", "http", "response", "raw_payload", "raw", "payload"} <= keywords
    assert "def" in keywords
    assert "re" not in keywords


def test_python_elements_cover_functions_and_classes() -> None:
    source = textwrap.dedent(
        """
        import os


        class Greeter:
            def greet(self, name):
                return f"hello {name}"


        @staticmethod
        def helper():
            return os.getcwd()
        """
    ).lstrip()

    elements = extract_elements("pkg/greeter.py", source)

    assert elements[0].type == "module"
    assert elements[0].name == "pkg/greeter.py"
    summary = [(element.type, element.name, element.line_start, element.line_end) for element in elements[1:]]
    assert summary == [
        ("class", "Greeter", 4, 6),
        ("function", "greet", 5, 6),
        ("function", "helper", 9, 11),
    ]


def test_invalid_python_still_yields_module() -> None:
    elements = extract_elements("broken.py", "def nope(:\n")

    assert [element.type for element in elements] == ["module"]


def test_typescript_declarations() -> None:
    source = textwrap.dedent(
        """
        export interface Greeting {
          text: string;
        }

        export class Greeter {
          greet(): Greeting {
            return { text: "hello" };
          }
        }

        export async function loadGreeting(id: string) {
          return fetchGreeting(id);
        }

        export const shout = (value: string) => value.toUpperCase();
        const functionName = 1;
        """
    ).lstrip()

    elements = extract_elements("src/greeter.ts", source)
    summary = [(element.type, element.name, element.line_start, element.line_end) for element in elements[1:]]

    assert summary == [
        ("interface", "Greeting", 1, 3),
        ("class", "Greeter", 5, 9),
        ("function", "loadGreeting", 11, 13),
        ("function", "shout", 15, 15),
    ]


def test_unsupported_language_is_module_only() -> None:
    elements = extract_elements("docs/guide.md", "# Guide\n\nSome text\n")

    assert [element.type for element in elements] == ["module"]
    assert elements[0].line_end == 3
