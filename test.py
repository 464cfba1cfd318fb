import doctest
import sys
import unittest

import dkimsigner
import dkimsigner.canonicalization
import dkimsigner.util
from dkimsigner.tests import test_suite

failed = 0
for module in (dkimsigner, dkimsigner.canonicalization, dkimsigner.util):
    failed += doctest.testmod(module).failed
result = unittest.TextTestRunner().run(test_suite())
sys.exit(1 if failed or not result.wasSuccessful() else 0)
