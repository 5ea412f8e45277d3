"""
Test config parsing and logging setup for phylotrait analyses.
"""

import logging
import os
import tempfile
import unittest

from phylotrait import constants, setup_utilities
from phylotrait.mixins import ConfigError, logger


class TestParseConfig(unittest.TestCase):
    def setUp(self):

        self.basic_config = {
            "general": {"random_seed": 7, "threads": 2},
            "optimizer": {"n_starts": 5, "strict": True},
            "continuous": {"models": ["BM", "lambda"]},
            "discrete": {"model": "'ARD'", "root_prior": [0.2, 0.8]},
        }

        self.basic_config_string = ""
        for key in self.basic_config:
            self.basic_config_string += f"[{key}]\n"
            for k, v in self.basic_config[key].items():
                self.basic_config_string += f"{k} = {v}\n"

    def test_defaults(self):

        parameters = setup_utilities.parse_config("")
        self.assertEqual(parameters, constants.DEFAULT_ANALYSIS_PARAMETERS)

    def test_read_good_config(self):

        parameters = setup_utilities.parse_config(self.basic_config_string)

        self.assertEqual(parameters["general"]["random_seed"], 7)
        self.assertEqual(parameters["general"]["threads"], 2)
        self.assertEqual(parameters["optimizer"]["n_starts"], 5)
        self.assertTrue(parameters["optimizer"]["strict"])
        self.assertEqual(parameters["continuous"]["models"], ["BM", "lambda"])
        self.assertEqual(parameters["discrete"]["model"], "ARD")
        self.assertEqual(parameters["discrete"]["root_prior"], [0.2, 0.8])

        # untouched parameters keep their defaults
        self.assertEqual(parameters["general"]["log_level"], "INFO")
        self.assertEqual(parameters["optimizer"]["max_iterations"], 500)
        self.assertIsNone(parameters["regression"]["parameter"])
        self.assertEqual(
            parameters["stochastic_mapping"]["n_simulations"], 100
        )

    def test_unknown_section(self):

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("[plotting]\nwidth = 3")

    def test_unknown_parameter(self):

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("[optimizer]\nmethod = 'nelder'")

    def test_unquoted_string(self):

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("[discrete]\nmodel = ARD")

    def test_bad_general_parameters(self):

        for threads in ["0", "1.5", "'two'"]:
            with self.assertRaises(ConfigError):
                setup_utilities.parse_config(f"[general]\nthreads = {threads}")

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("[general]\nlog_level = 'LOUD'")

    def test_unreadable_config(self):

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("threads = 2")

        with self.assertRaises(ConfigError):
            setup_utilities.parse_config("[general]\n[general]\n")


class TestSetupLogging(unittest.TestCase):
    def tearDown(self):

        logger.setLevel(logging.NOTSET)

    def test_setup_logging(self):

        with tempfile.TemporaryDirectory() as directory:
            output_directory = os.path.join(directory, "analysis")
            setup_utilities.setup_logging(output_directory, "DEBUG")

            self.assertTrue(os.path.isdir(output_directory))
            self.assertEqual(logger.level, logging.DEBUG)

    def test_bad_log_level(self):

        with self.assertRaises(ConfigError):
            setup_utilities.setup_logging(log_level="verbose")


if __name__ == "__main__":
    unittest.main()
