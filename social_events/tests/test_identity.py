import base64
import json
import unittest

from social_events.errors import Unauthorized
from social_events.identity import (
    Identity,
    UnverifiedTokenDecoder,
    extract_identity,
)


def make_token(claims, padded=False) -> str:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode("utf-8")).decode()
    if not padded:
        payload = payload.rstrip("=")
    return f"eyJhbGciOiJIUzI1NiJ9.{payload}.signature"


class ExtractIdentityTests(unittest.TestCase):
    def setUp(self):
        self.decoder = UnverifiedTokenDecoder()

    def extract(self, header):
        return extract_identity(header, self.decoder)

    def test_full_claims(self):
        token = make_token(
            {"email": "ana@example.com", "name": "Ana", "picture": "https://img/ana.png"}
        )
        identity = self.extract(f"Bearer {token}")
        self.assertEqual(
            identity,
            Identity(
                email="ana@example.com",
                displayName="Ana",
                photoURL="https://img/ana.png",
            ),
        )

    def test_defaults_when_name_and_picture_absent(self):
        identity = self.extract(f"Bearer {make_token({'email': 'bo@example.com'})}")
        self.assertEqual(identity.email, "bo@example.com")
        self.assertEqual(identity.displayName, "Anonymous")
        self.assertIsNone(identity.photoURL)

    def test_accepts_padded_and_standard_alphabet_payloads(self):
        claims = {"email": "cy@example.com", "name": "Cy???>>>"}
        padded = make_token(claims, padded=True)
        self.assertEqual(self.extract(f"Bearer {padded}").email, "cy@example.com")

        standard = base64.b64encode(json.dumps(claims).encode("utf-8")).decode()
        identity = self.extract(f"Bearer head.{standard}.sig")
        self.assertEqual(identity.displayName, "Cy???>>>")

    def test_rejects_missing_or_malformed_credentials(self):
        cases = {
            "no header": None,
            "empty header": "",
            "other scheme": f"Basic {make_token({'email': 'a@b.c'})}",
            "empty token": "Bearer ",
            "no payload segment": "Bearer onlyheader",
            "empty payload segment": "Bearer head..sig",
            "undecodable payload": "Bearer head.!!!.sig",
            "payload not json": f"Bearer head.{base64.urlsafe_b64encode(b'nope').decode()}.sig",
            "payload not an object": f"Bearer {make_token(['a@b.c'])}",
            "missing email": f"Bearer {make_token({'name': 'Ana'})}",
            "empty email": f"Bearer {make_token({'email': ''})}",
        }
        for label, header in cases.items():
            with self.subTest(label):
                with self.assertRaises(Unauthorized) as ctx:
                    self.extract(header)
                self.assertEqual(ctx.exception.status_code, 401)

    def test_uses_supplied_decoder(self):
        class StaticDecoder:
            def decode(self, token):
                if token != "trusted":
                    raise ValueError("bad signature")
                return {"email": "svc@example.com", "name": "Service"}

        identity = extract_identity("Bearer trusted", StaticDecoder())
        self.assertEqual(identity.displayName, "Service")
        with self.assertRaises(Unauthorized):
            extract_identity("Bearer forged", StaticDecoder())


if __name__ == "__main__":
    unittest.main()
