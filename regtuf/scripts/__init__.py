# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0
