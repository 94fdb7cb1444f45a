# Copyright (c) VaReg Contributors
