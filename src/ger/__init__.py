# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
ger: a command-line client for Gerrit Code Review.

The package is split into a REST layer (``ger.gerrit``), local git
helpers (``ger.git``, ``ger.worktree``, ``ger.commit_hook``), pure
engines (``ger.build_status``, ``ger.push``) and the command front end
(``ger.cli``).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
