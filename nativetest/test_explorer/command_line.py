"""Tokenize CMake-style command lines."""

import re

_BRACKET_OPEN = re.compile(r"\[(=*)\[")


def parse_command_line(line: str) -> list[str]:
    """Split a CMake command line into tokens.

    Handles whitespace separated words, double-quoted strings (backslash
    escapes inside quotes) and bracket literals such as ``[==[ ... ]==]``
    whose content is taken verbatim.

    Args:
        line: Command line fragment

    Returns:
        List of tokens with quotes and bracket delimiters removed

    """
    tokens: list[str] = []
    current: list[str] = []
    has_token = False
    in_quotes = False
    i = 0
    length = len(line)

    while i < length:
        char = line[i]

        if in_quotes:
            if char == "\\" and i + 1 < length:
                current.append(line[i + 1])
                i += 2
                continue
            if char == '"':
                in_quotes = False
            else:
                current.append(char)
            i += 1
            continue

        if char.isspace():
            if has_token:
                tokens.append("".join(current))
                current = []
                has_token = False
            i += 1
            continue

        if char == "[" and not has_token:
            match = _BRACKET_OPEN.match(line, i)
            if match:
                closing = "]" + match.group(1) + "]"
                end = line.find(closing, match.end())
                if end != -1:
                    current.append(line[match.end() : end])
                    has_token = True
                    i = end + len(closing)
                    continue

        if char == "\\" and i + 1 < length and line[i + 1] == '"':
            current.append('"')
            has_token = True
            i += 2
            continue

        if char == '"':
            in_quotes = True
            has_token = True
            i += 1
            continue

        current.append(char)
        has_token = True
        i += 1

    if has_token:
        tokens.append("".join(current))

    return tokens
