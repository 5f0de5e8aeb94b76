import unittest

from luggagelink.security import hash_password, verify_password


class PasswordHashTests(unittest.TestCase):
    def test_hash_format_and_verify(self):
        stored = hash_password("secret-pass")
        digest, salt = stored.split(".")
        self.assertEqual(len(digest), 128)
        self.assertEqual(len(salt), 32)
        self.assertTrue(verify_password("secret-pass", stored))
        self.assertFalse(verify_password("Secret-pass", stored))

    def test_salts_differ(self):
        self.assertNotEqual(hash_password("same"), hash_password("same"))

    def test_malformed_hash_never_verifies(self):
        for stored in ("", "nodot", "zz.salt", ".salt", "abcd."):
            self.assertFalse(verify_password("anything", stored))


if __name__ == "__main__":
    unittest.main()
