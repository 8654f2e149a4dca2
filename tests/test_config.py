# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import unittest

from psffit import config


class TestUseDefaults(unittest.TestCase):
    def setUp(self):
        self.retries = config.rc["max_retries"]

    def test_function_decorator(self):
        """config.use_defaults: function decorator"""
        @config.use_defaults
        def f(max_retries=None, other=None):
            return max_retries, other

        self.assertEqual(f(), (self.retries, None))
        self.assertEqual(f(None), (self.retries, None))
        self.assertEqual(f(3), (3, None))
        try:
            config.rc["max_retries"] = 42
            res = f()
        finally:
            config.rc["max_retries"] = self.retries
        self.assertEqual(res, (42, None))

    def test_method_decorator(self):
        """config.use_defaults: method decorator"""
        class A:
            @config.use_defaults
            def __init__(self, max_retries=None):
                self.retries = max_retries
        self.assertEqual(A().retries, self.retries)
        self.assertEqual(A(None).retries, self.retries)
        self.assertEqual(A(3).retries, 3)
        try:
            config.rc["max_retries"] = 42
            res = A()
        finally:
            config.rc["max_retries"] = self.retries
        self.assertEqual(res.retries, 42)


class TestSetColumns(unittest.TestCase):
    def setUp(self):
        self.columns = config.columns.copy()

    def test_function_decorator(self):
        """config.set_columns: function decorator"""
        @config.set_columns
        def f(columns={}):
            return columns

        self.assertDictEqual(f(), self.columns)
        self.assertDictEqual(f({}), self.columns)

        cols = self.columns.copy()
        cols["mass"] = "photons"
        self.assertDictEqual(f({"mass": "photons"}), cols)

        try:
            config.columns["size"] = ["wx", "wy"]
            res = f()
        finally:
            config.columns = self.columns.copy()
        cols = self.columns.copy()
        cols["size"] = ["wx", "wy"]
        self.assertDictEqual(res, cols)
