"""
Reader for CMake export files.

Installed packages such as LLVM describe their libraries in generated files
(LLVMExports.cmake plus one LLVMExports-<config>.cmake per configuration).
ExportsReader evaluates the small subset of the CMake language those files use
and records every imported target, with its properties, in a TargetGraph.

Supported commands:
    add_library, add_executable(IMPORTED), set_target_properties, set_property(TARGET ...),
    set, unset, list(APPEND), get_filename_component, file(GLOB),
    include, if/elseif/else/endif, foreach/endforeach, return, message

Anything else is skipped (logged at debug level).

Usage:
    reader = ExportsReader()
    graph = reader.read("/usr/lib/llvm-18/lib/cmake/llvm/LLVMExports.cmake")
"""

import glob
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

from target_graph import TargetGraph, TargetType

logger = logging.getLogger(__name__)

# Stands in for an escaped \$ between tokenizing and variable expansion
_ESCAPED_DOLLAR = "\ue000"
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_BRACKET_OPEN = re.compile(r"\[(=*)\[")

_TRUE_CONSTANTS = ("1", "ON", "YES", "TRUE", "Y")
_FALSE_CONSTANTS = ("0", "OFF", "NO", "FALSE", "N", "IGNORE", "NOTFOUND", "")

DEFAULT_CMAKE_VERSION = "3.28.0"


class CMakeParseError(ValueError):
    """Raised when a CMake file cannot be tokenized."""


class Arg(NamedTuple):
    text: str
    kind: str  # "quoted", "unquoted" or "bracket"


class Command(NamedTuple):
    name: str
    args: List[Arg]
    line: int


class _Return(Exception):
    """Unwinds the current file on return()."""


def _skip_bracket(text: str, pos: int, equals: str, what: str, line: int) -> Tuple[str, int]:
    closing = "]" + equals + "]"
    end = text.find(closing, pos)
    if end < 0:
        raise CMakeParseError(f"Unterminated bracket {what} starting on line {line}")
    return text[pos:end], end + len(closing)


def tokenize(text: str) -> List[Command]:
    """
    Split CMake source into commands.

    Raises:
        CMakeParseError: On unterminated strings, brackets or argument lists
    """
    commands = []
    pos = 0
    line = 1
    length = len(text)

    while pos < length:
        ch = text[pos]
        if ch == "\n":
            line += 1
            pos += 1
            continue
        if ch.isspace():
            pos += 1
            continue
        if ch == "#":
            m = _BRACKET_OPEN.match(text, pos + 1)
            if m:
                body, pos = _skip_bracket(text, m.end(), m.group(1), "comment", line)
                line += body.count("\n")
            else:
                nl = text.find("\n", pos)
                pos = length if nl < 0 else nl
            continue

        m = _IDENT.match(text, pos)
        if not m:
            raise CMakeParseError(f"Expected a command name on line {line}, got {ch!r}")
        name = m.group(0).lower()
        cmd_line = line
        pos = m.end()
        while pos < length and text[pos] in " \t":
            pos += 1
        if pos >= length or text[pos] != "(":
            raise CMakeParseError(f"Expected '(' after {name} on line {line}")
        pos += 1

        args, pos, line = _parse_arguments(text, pos, line, name, cmd_line)
        commands.append(Command(name, args, cmd_line))

    return commands


def _parse_arguments(text: str, pos: int, line: int, name: str, cmd_line: int):
    args = []
    depth = 0
    length = len(text)

    while True:
        if pos >= length:
            raise CMakeParseError(f"Unterminated argument list for {name} starting on line {cmd_line}")
        ch = text[pos]

        if ch == "\n":
            line += 1
            pos += 1
        elif ch.isspace():
            pos += 1
        elif ch == "#":
            m = _BRACKET_OPEN.match(text, pos + 1)
            if m:
                body, pos = _skip_bracket(text, m.end(), m.group(1), "comment", line)
                line += body.count("\n")
            else:
                nl = text.find("\n", pos)
                pos = length if nl < 0 else nl
        elif ch == "(":
            depth += 1
            args.append(Arg("(", "unquoted"))
            pos += 1
        elif ch == ")":
            pos += 1
            if depth == 0:
                return args, pos, line
            depth -= 1
            args.append(Arg(")", "unquoted"))
        elif ch == '"':
            value, pos, line = _parse_quoted(text, pos + 1, line)
            args.append(Arg(value, "quoted"))
        elif ch == "[" and _BRACKET_OPEN.match(text, pos):
            m = _BRACKET_OPEN.match(text, pos)
            body, pos = _skip_bracket(text, m.end(), m.group(1), "argument", line)
            line += body.count("\n")
            if body.startswith("\n"):
                body = body[1:]
            args.append(Arg(body, "bracket"))
        else:
            value, pos = _parse_unquoted(text, pos)
            args.append(Arg(value, "unquoted"))


def _unescape(ch: str) -> str:
    return {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "$": _ESCAPED_DOLLAR}.get(ch, ch)


def _parse_quoted(text: str, pos: int, line: int):
    out = []
    start_line = line
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch == "\\" and pos + 1 < length:
            nxt = text[pos + 1]
            if nxt == "\n":
                line += 1
            else:
                out.append(_unescape(nxt))
            pos += 2
            continue
        if ch == '"':
            return "".join(out), pos + 1, line
        if ch == "\n":
            line += 1
        out.append(ch)
        pos += 1
    raise CMakeParseError(f"Unterminated quoted argument starting on line {start_line}")


def _parse_unquoted(text: str, pos: int):
    out = []
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isspace() or ch in "()#\"":
            break
        if ch == "\\" and pos + 1 < length:
            out.append(_unescape(text[pos + 1]))
            pos += 2
            continue
        out.append(ch)
        pos += 1
    return "".join(out), pos


def _is_true_constant(value: str) -> bool:
    if value.upper() in _TRUE_CONSTANTS:
        return True
    try:
        return float(value) != 0
    except ValueError:
        return False


def _is_false_constant(value: str) -> bool:
    upper = value.upper()
    return upper in _FALSE_CONSTANTS or upper.endswith("-NOTFOUND")


def _version_tuple(value: str) -> Tuple[int, ...]:
    parts = []
    for piece in value.split("."):
        m = re.match(r"\d+", piece)
        parts.append(int(m.group(0)) if m else 0)
    return tuple(parts)


def _compare_versions(lhs: str, rhs: str) -> int:
    a, b = _version_tuple(lhs), _version_tuple(rhs)
    width = max(len(a), len(b))
    a += (0,) * (width - len(a))
    b += (0,) * (width - len(b))
    return (a > b) - (a < b)


class ExportsReader:
    """
    Evaluates CMake export files into a TargetGraph.

    Args:
        graph: Graph to add targets to (a new one by default)
        variables: Initial variable values (CMAKE_VERSION defaults to a current release)
    """

    def __init__(self, graph: Optional[TargetGraph] = None, variables: Optional[Dict[str, str]] = None):
        self.graph = graph if graph is not None else TargetGraph()
        self.variables: Dict[str, str] = {"CMAKE_VERSION": DEFAULT_CMAKE_VERSION}
        if variables:
            self.variables.update(variables)
        self.files_read: List[str] = []

    def read(self, path) -> TargetGraph:
        """
        Evaluate an export file (and everything it includes).

        Raises:
            FileNotFoundError: If the file does not exist
            CMakeParseError: If the file cannot be tokenized
        """
        path = Path(path).resolve()
        if not path.is_file():
            raise FileNotFoundError(f"CMake export file not found: {path}")
        self._include(str(path))
        logger.info(f"Read {len(self.graph)} target(s) from {path.name}")
        return self.graph

    def _include(self, path: str) -> None:
        with open(path, "r", encoding="utf-8") as f:
            commands = tokenize(f.read())

        saved = {k: self.variables.get(k) for k in ("CMAKE_CURRENT_LIST_FILE", "CMAKE_CURRENT_LIST_DIR")}
        self.variables["CMAKE_CURRENT_LIST_FILE"] = path
        self.variables["CMAKE_CURRENT_LIST_DIR"] = os.path.dirname(path)
        self.files_read.append(path)
        logger.debug(f"Evaluating {path} ({len(commands)} commands)")

        try:
            self._execute(commands, 0, len(commands))
        except _Return:
            logger.debug(f"return() in {path}")
        finally:
            for key, value in saved.items():
                if value is None:
                    self.variables.pop(key, None)
                else:
                    self.variables[key] = value

    # ── Expansion ─────────────────────────────────────────────────────────

    def expand(self, text: str) -> str:
        """
        Replace ${VAR} references in a single pass, innermost first.

        Undefined variables expand to ''. Substituted values are not scanned
        again, and an escaped \\${...} stays literal.

        Raises:
            CMakeParseError: On a ${ without a closing brace
        """
        value, _ = self._expand_from(text, 0, nested=False)
        return value.replace(_ESCAPED_DOLLAR, "$")

    def _expand_from(self, text: str, pos: int, nested: bool) -> Tuple[str, int]:
        out = []
        length = len(text)
        while pos < length:
            if text.startswith("${", pos):
                name, pos = self._expand_from(text, pos + 2, nested=True)
                out.append(self.variables.get(name, ""))
                continue
            ch = text[pos]
            if nested and ch == "}":
                return "".join(out), pos + 1
            out.append(ch)
            pos += 1
        if nested:
            raise CMakeParseError(f"Unterminated variable reference in {text!r}")
        return "".join(out), pos

    def _expand_args(self, args: List[Arg]) -> List[str]:
        values = []
        for arg in args:
            if arg.kind == "bracket":
                values.append(arg.text)
            elif arg.kind == "quoted":
                values.append(self.expand(arg.text))
            else:
                values.extend(v for v in self.expand(arg.text).split(";") if v != "")
        return values

    # ── Control flow ──────────────────────────────────────────────────────

    def _execute(self, commands: List[Command], start: int, end: int) -> None:
        i = start
        while i < end:
            cmd = commands[i]
            if cmd.name == "if":
                i = self._run_if(commands, i, end)
            elif cmd.name == "foreach":
                i = self._run_foreach(commands, i, end)
            else:
                self._run_command(cmd)
                i += 1

    @staticmethod
    def _block_end(commands: List[Command], start: int, end: int, opener: str, closer: str) -> int:
        depth = 0
        for i in range(start + 1, end):
            name = commands[i].name
            if name == opener:
                depth += 1
            elif name == closer:
                if depth == 0:
                    return i
                depth -= 1
        raise CMakeParseError(
            f"{opener}() on line {commands[start].line} has no matching {closer}()"
        )

    def _run_if(self, commands: List[Command], start: int, end: int) -> int:
        endif = self._block_end(commands, start, end, "if", "endif")

        # Branch heads at nesting depth zero: (index, command)
        heads = [start]
        depth = 0
        for i in range(start + 1, endif):
            name = commands[i].name
            if name == "if":
                depth += 1
            elif name == "endif":
                depth -= 1
            elif depth == 0 and name in ("elseif", "else"):
                heads.append(i)
        heads.append(endif)

        for head, next_head in zip(heads, heads[1:]):
            cmd = commands[head]
            taken = cmd.name == "else" or self.evaluate_condition(cmd.args)
            if taken:
                self._execute(commands, head + 1, next_head)
                break
        return endif + 1

    def _run_foreach(self, commands: List[Command], start: int, end: int) -> int:
        endforeach = self._block_end(commands, start, end, "foreach", "endforeach")
        args = self._expand_args(commands[start].args)
        if not args:
            return endforeach + 1

        loop_var, rest = args[0], args[1:]
        items: List[str] = []
        if rest and rest[0] == "IN":
            mode = None
            for word in rest[1:]:
                if word in ("LISTS", "ITEMS"):
                    mode = word
                elif mode == "LISTS":
                    items.extend(v for v in self.variables.get(word, "").split(";") if v)
                elif mode == "ITEMS":
                    items.append(word)
        elif rest and rest[0] == "RANGE":
            logger.debug(f"foreach(RANGE) on line {commands[start].line} not supported, skipping")
        else:
            items = rest

        saved = self.variables.get(loop_var)
        for item in items:
            self.variables[loop_var] = item
            self._execute(commands, start + 1, endforeach)
        if saved is None:
            self.variables.pop(loop_var, None)
        else:
            self.variables[loop_var] = saved
        return endforeach + 1

    # ── Conditions ────────────────────────────────────────────────────────

    def evaluate_condition(self, args: List[Arg]) -> bool:
        """
        Evaluate an if() condition.

        Supports NOT, AND, OR, parentheses, TARGET, EXISTS, DEFINED, STREQUAL,
        EQUAL, LESS, GREATER and the VERSION_* comparisons. Unsupported forms
        evaluate to false.
        """
        tokens = []
        for arg in args:
            if arg.kind == "unquoted":
                tokens.append((self.expand(arg.text), False))
            else:
                tokens.append((self.expand(arg.text) if arg.kind == "quoted" else arg.text, True))
        try:
            value, pos = self._parse_or(tokens, 0)
        except IndexError:
            logger.debug(f"Unsupported condition: {[t for t, _ in tokens]}")
            return False
        if pos != len(tokens):
            logger.debug(f"Unsupported condition: {[t for t, _ in tokens]}")
            return False
        return value

    def _parse_or(self, tokens, pos):
        value, pos = self._parse_and(tokens, pos)
        while pos < len(tokens) and tokens[pos] == ("OR", False):
            rhs, pos = self._parse_and(tokens, pos + 1)
            value = value or rhs
        return value, pos

    def _parse_and(self, tokens, pos):
        value, pos = self._parse_not(tokens, pos)
        while pos < len(tokens) and tokens[pos] == ("AND", False):
            rhs, pos = self._parse_not(tokens, pos + 1)
            value = value and rhs
        return value, pos

    def _parse_not(self, tokens, pos):
        if tokens[pos] == ("NOT", False):
            value, pos = self._parse_not(tokens, pos + 1)
            return not value, pos
        return self._parse_primary(tokens, pos)

    def _operand(self, token) -> str:
        text, quoted = token
        if not quoted and text in self.variables:
            return self.variables[text]
        return text

    def _parse_primary(self, tokens, pos):
        text, quoted = tokens[pos]

        if not quoted and text == "(":
            value, pos = self._parse_or(tokens, pos + 1)
            if tokens[pos] != (")", False):
                raise IndexError("unbalanced parentheses")
            return value, pos + 1

        if not quoted and text in ("TARGET", "EXISTS", "DEFINED"):
            operand = tokens[pos + 1][0]
            if text == "TARGET":
                return self.graph.is_target(operand), pos + 2
            if text == "EXISTS":
                return bool(operand) and os.path.exists(operand), pos + 2
            return operand in self.variables, pos + 2

        if pos + 1 < len(tokens):
            op, op_quoted = tokens[pos + 1]
            if not op_quoted and op in _BINARY_OPS:
                lhs = self._operand(tokens[pos])
                rhs = self._operand(tokens[pos + 2])
                return _BINARY_OPS[op](lhs, rhs), pos + 3

        if quoted:
            return _is_true_constant(text), pos + 1
        if _is_true_constant(text):
            return True, pos + 1
        if _is_false_constant(text):
            return False, pos + 1
        value = self.variables.get(text)
        return value is not None and not _is_false_constant(value), pos + 1

    # ── Commands ──────────────────────────────────────────────────────────

    def _run_command(self, cmd: Command) -> None:
        handler = getattr(self, f"_cmd_{cmd.name}", None)
        if handler is None:
            logger.debug(f"Skipping {cmd.name}() on line {cmd.line}")
            return
        handler(self._expand_args(cmd.args), cmd)

    def _cmd_return(self, args, cmd):
        raise _Return()

    def _cmd_message(self, args, cmd):
        if args and args[0] in ("FATAL_ERROR", "SEND_ERROR"):
            logger.warning(f"message({args[0]}) on line {cmd.line}: {' '.join(args[1:])}")
        else:
            logger.debug(f"message(): {' '.join(args)}")

    def _cmd_set(self, args, cmd):
        if not args:
            return
        name, values = args[0], args[1:]
        for keyword in ("PARENT_SCOPE", "CACHE"):
            if keyword in values:
                values = values[:values.index(keyword)]
        if values:
            self.variables[name] = ";".join(values)
        else:
            self.variables.pop(name, None)

    def _cmd_unset(self, args, cmd):
        if args:
            self.variables.pop(args[0], None)

    def _cmd_list(self, args, cmd):
        if len(args) >= 2 and args[0] == "APPEND":
            current = [v for v in self.variables.get(args[1], "").split(";") if v]
            self.variables[args[1]] = ";".join(current + args[2:])
        else:
            logger.debug(f"Skipping list({args[0] if args else ''}) on line {cmd.line}")

    def _cmd_get_filename_component(self, args, cmd):
        if len(args) < 3:
            return
        var, value, mode = args[0], args[1], args[2]
        if mode in ("PATH", "DIRECTORY"):
            result = os.path.dirname(value.rstrip("/")) if value not in ("", "/") else value
        elif mode == "NAME":
            result = os.path.basename(value)
        elif mode == "NAME_WE":
            result = os.path.basename(value).split(".", 1)[0]
        elif mode in ("ABSOLUTE", "REALPATH"):
            result = os.path.abspath(value)
            if mode == "REALPATH":
                result = os.path.realpath(result)
        else:
            logger.debug(f"get_filename_component({mode}) not supported on line {cmd.line}")
            return
        self.variables[var] = result

    def _cmd_file(self, args, cmd):
        if len(args) < 2 or args[0] not in ("GLOB", "GLOB_RECURSE"):
            logger.debug(f"Skipping file({args[0] if args else ''}) on line {cmd.line}")
            return
        var = args[1]
        patterns = []
        skip_next = False
        for word in args[2:]:
            if skip_next:
                skip_next = False
            elif word in ("LIST_DIRECTORIES", "RELATIVE"):
                skip_next = True
            elif word not in ("CONFIGURE_DEPENDS", "FOLLOW_SYMLINKS"):
                patterns.append(word)
        found = set()
        recursive = args[0] == "GLOB_RECURSE"
        for pattern in patterns:
            if recursive:
                head, tail = os.path.split(pattern)
                pattern = os.path.join(head, "**", tail)
            found.update(p for p in glob.glob(pattern, recursive=recursive) if os.path.isfile(p))
        self.variables[var] = ";".join(sorted(found))

    def _cmd_include(self, args, cmd):
        if not args:
            return
        optional = "OPTIONAL" in args[1:]
        path = args[0]
        if not os.path.isabs(path):
            path = os.path.join(self.variables.get("CMAKE_CURRENT_LIST_DIR", ""), path)
        if not os.path.isfile(path):
            if optional:
                return
            raise FileNotFoundError(f"include() on line {cmd.line}: file not found: {path}")
        self._include(os.path.abspath(path))

    def _cmd_add_library(self, args, cmd):
        if len(args) < 2:
            return
        name, kind = args[0], args[1]
        if kind == "ALIAS":
            logger.debug(f"Skipping ALIAS target {name}")
            return
        imported = "IMPORTED" in args[2:]
        # INTERFACE libraries carry only usage requirements; others need sources
        if not imported and kind != "INTERFACE":
            logger.debug(f"Skipping non-imported target {name}")
            return
        self.graph.add_library(
            name,
            TargetType.from_keyword(kind),
            imported=imported,
            global_="GLOBAL" in args[2:],
        )

    def _cmd_add_executable(self, args, cmd):
        if len(args) < 2 or "IMPORTED" not in args[1:]:
            logger.debug(f"Skipping non-imported executable on line {cmd.line}")
            return
        self.graph.add_library(
            args[0],
            TargetType.EXECUTABLE,
            imported=True,
            global_="GLOBAL" in args[1:],
        )

    def _cmd_set_target_properties(self, args, cmd):
        if "PROPERTIES" not in args:
            raise CMakeParseError(f"set_target_properties() on line {cmd.line} has no PROPERTIES")
        split = args.index("PROPERTIES")
        names, pairs = args[:split], args[split + 1:]
        if len(pairs) % 2:
            raise CMakeParseError(
                f"set_target_properties() on line {cmd.line} has an odd number of property arguments"
            )
        for name in names:
            if not self.graph.is_target(name):
                logger.debug(f"set_target_properties() on unknown target {name}")
                continue
            target = self.graph.get(name)
            for key, value in zip(pairs[0::2], pairs[1::2]):
                target.set_property(key, value)

    def _cmd_set_property(self, args, cmd):
        if not args or args[0] != "TARGET" or "PROPERTY" not in args:
            logger.debug(f"Skipping set_property() on line {cmd.line}")
            return
        split = args.index("PROPERTY")
        scope = args[1:split]
        append = "APPEND" in scope or "APPEND_STRING" in scope
        names = [n for n in scope if n not in ("APPEND", "APPEND_STRING")]
        if split + 1 >= len(args):
            raise CMakeParseError(f"set_property() on line {cmd.line} has no property name")
        prop, values = args[split + 1], args[split + 2:]
        for name in names:
            if not self.graph.is_target(name):
                logger.debug(f"set_property() on unknown target {name}")
                continue
            target = self.graph.get(name)
            if append:
                target.append_property(prop, values)
            else:
                target.set_property(prop, values)


def _safe_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _numeric(compare):
    def op(a: str, b: str) -> bool:
        x, y = _safe_float(a), _safe_float(b)
        return x is not None and y is not None and compare(x, y)
    return op


_BINARY_OPS = {
    "STREQUAL": lambda a, b: a == b,
    "EQUAL": _numeric(lambda x, y: x == y),
    "LESS": _numeric(lambda x, y: x < y),
    "GREATER": _numeric(lambda x, y: x > y),
    "VERSION_LESS": lambda a, b: _compare_versions(a, b) < 0,
    "VERSION_GREATER": lambda a, b: _compare_versions(a, b) > 0,
    "VERSION_EQUAL": lambda a, b: _compare_versions(a, b) == 0,
    "VERSION_LESS_EQUAL": lambda a, b: _compare_versions(a, b) <= 0,
    "VERSION_GREATER_EQUAL": lambda a, b: _compare_versions(a, b) >= 0,
}


def read_exports(path, variables: Optional[Dict[str, str]] = None) -> TargetGraph:
    """Read an export file into a new TargetGraph."""
    return ExportsReader(variables=variables).read(path)
