"""
Tests for the server's logging setup: directive parsing, per-module
levels, line format and the stream handler.
"""

import io
import logging
import os
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from qualify.logger import (
    OFF, TRACE, DirectiveFilter, LineFormatter, LineHandler, configure_logging,
    parse_filter,
)


def make_record(name, level, msg="hello %s", args=("world",)):
    return logging.LogRecord(name, level, __file__, 1, msg, args, None)


class TestParseFilter(unittest.TestCase):

    def test_absent_filter_passes_everything(self):
        self.assertEqual(parse_filter(None), (TRACE, []))
        self.assertEqual(parse_filter("  "), (TRACE, []))
        f = DirectiveFilter()
        self.assertTrue(f.filter(make_record("qualify.fix_engine", TRACE)))
        self.assertTrue(f.filter(make_record("mcp.server", logging.DEBUG)))

    def test_bare_level(self):
        self.assertEqual(parse_filter("info"), (logging.INFO, []))
        self.assertEqual(parse_filter("TRACE"), (TRACE, []))

    def test_module_directives(self):
        default, directives = parse_filter("warn,qualify::semantic_oracle=debug,qualify=info")
        self.assertEqual(default, logging.WARNING)
        # longest module first
        self.assertEqual(directives, [("qualify.semantic_oracle", logging.DEBUG), ("qualify", logging.INFO)])

    def test_module_without_level_enables_everything(self):
        self.assertEqual(parse_filter("qualify"), (OFF, [("qualify", TRACE)]))

    def test_invalid_level_is_ignored(self):
        default, directives = parse_filter("qualify=loud,info")
        self.assertEqual(default, logging.INFO)
        self.assertEqual(directives, [])

    def test_regex_suffix_is_dropped(self):
        self.assertEqual(parse_filter("debug/foo.*"), (logging.DEBUG, []))


class TestDirectiveFilter(unittest.TestCase):

    def test_level_for_module_tree(self):
        f = DirectiveFilter("error,qualify.workspace_index=debug")
        self.assertEqual(f.level_for("qualify.workspace_index"), logging.DEBUG)
        self.assertEqual(f.level_for("qualify.workspace_index.child"), logging.DEBUG)
        self.assertEqual(f.level_for("qualify.workspace_indexer"), logging.ERROR)
        self.assertEqual(f.level_for("mcp"), logging.ERROR)
        self.assertEqual(f.min_level, logging.DEBUG)

    def test_unnamed_modules_silenced(self):
        f = DirectiveFilter("qualify=info")
        self.assertFalse(f.filter(make_record("mcp.server", logging.ERROR)))
        self.assertTrue(f.filter(make_record("qualify.fix_engine", logging.INFO)))
        self.assertFalse(f.filter(make_record("qualify.fix_engine", logging.DEBUG)))


class TestLineHandler(unittest.TestCase):

    def test_line_format(self):
        formatter = LineFormatter()
        self.assertEqual(formatter.format(make_record("qualify.fix_engine", logging.WARNING)),
                         "[WARN qualify.fix_engine] hello world")
        self.assertEqual(formatter.format(make_record("x", TRACE, "t", ())), "[TRACE x] t")

    def test_unbuffered_flushes_each_record(self):
        class CountingStream(io.StringIO):
            flushes = 0

            def flush(self):
                CountingStream.flushes += 1
                super().flush()

        stream = CountingStream()
        handler = LineHandler(stream, no_buffering=True)
        handler.setFormatter(LineFormatter())
        handler.emit(make_record("a", logging.INFO))
        handler.emit(make_record("a", logging.INFO))
        self.assertEqual(CountingStream.flushes, 2)
        self.assertEqual(stream.getvalue().count("\n"), 2)

    def test_write_errors_are_dropped(self):
        class BrokenStream:
            def write(self, _):
                raise OSError("disk full")

            def flush(self):
                raise OSError("disk full")

        handler = LineHandler(BrokenStream(), no_buffering=True)
        handler.setFormatter(LineFormatter())
        handler.emit(make_record("a", logging.ERROR))
        handler.flush()


class TestConfigureLogging(unittest.TestCase):

    def tearDown(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, LineHandler):
                root.removeHandler(handler)
                handler.close()
                if handler.stream not in (sys.stderr, sys.stdout):
                    handler.stream.close()

    def test_log_file_receives_filtered_records(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "qualify.log")
            configure_logging(log_file=path, no_buffering=True, filter="qualify=info")
            logging.getLogger("qualify.test").info("indexed %d crate(s)", 2)
            logging.getLogger("qualify.test").debug("not written")
            logging.getLogger("other").error("not written either")
            self.tearDown()
            with open(path, encoding="utf-8") as f:
                self.assertEqual(f.read(), "[INFO qualify.test] indexed 2 crate(s)\n")

    def test_reconfiguring_replaces_handler(self):
        first = configure_logging(filter="info")
        second = configure_logging(filter="debug")
        handlers = [h for h in logging.getLogger().handlers if isinstance(h, LineHandler)]
        self.assertEqual(handlers, [second])
        self.assertIsNot(first, second)
        self.assertEqual(logging.getLogger().level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
