# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Scrippets - discover, manage and run user-authored Python scripts."""

__version__ = "0.1.0"
