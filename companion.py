"""Companion unit, pulled in by inlay once the test line is printed."""

GREETING = "Hello"


def greet(name):
    return f"{GREETING}, {name}!"
