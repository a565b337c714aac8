# SPDX-FileCopyrightText: 2024 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Caching GitHub entity layer and user permission aggregation"""

from importlib.metadata import version

__version__ = version("github-org-portal")
