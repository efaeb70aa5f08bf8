"""
Tests for template variable expansion in server arguments.
"""

import os
import unittest

from mcpcli.core.configs import ServerProfile
from mcpcli.core.templates import expand_template_vars, resolve_server_args, sanitize_server_name


class TestTemplates(unittest.TestCase):

    def test_sanitize_strips_path_characters(self):
        self.assertEqual(sanitize_server_name("../../etc"), "etc")
        self.assertEqual(sanitize_server_name("my server!"), "myserver")
        self.assertEqual(sanitize_server_name("chrome-devtools_2"), "chrome-devtools_2")

    def test_expand_all_variables(self):
        arg = "--dir={profile_dir}/data --pid={pid} --cwd={cwd}"
        expanded = expand_template_vars(arg, "my/server", cwd="/work", pid=42)
        self.assertEqual(expanded, "--dir=.mcp-profile/myserver/data --pid=42 --cwd=/work")

    def test_pid_defaults_to_current_process(self):
        self.assertEqual(expand_template_vars("{pid}", "srv"), str(os.getpid()))

    def test_unknown_variables_untouched(self):
        self.assertEqual(expand_template_vars("{home}", "srv"), "{home}")

    def test_resolve_uses_override_even_when_empty(self):
        profile = ServerProfile(command=("srv",), default_args=("--data={profile_dir}",))
        self.assertEqual(resolve_server_args(profile, "srv"), ["--data=.mcp-profile/srv"])
        self.assertEqual(resolve_server_args(profile, "srv", override=[]), [])
        self.assertEqual(
            resolve_server_args(profile, "srv", override=["{cwd}"], cwd="/p"), ["/p"]
        )


if __name__ == "__main__":
    unittest.main()
