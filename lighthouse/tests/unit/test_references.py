import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import make_gateway, make_session_factory  # noqa: E402

from api.app.errors import IntegrityError, ObjectNotFound  # noqa: E402
from api.app.hash_ledger import HashLedger  # noqa: E402
from api.app.integrity import IntegrityVerifier  # noqa: E402
from api.app.object_paths import ContentType, Scope  # noqa: E402
from api.app.references import (  # noqa: E402
    DocumentContext,
    LoadedDocument,
    ReferenceResolver,
    find_local_references,
    rewrite_references,
)

CONTEXT = DocumentContext(
    case_id="case-1",
    scope=Scope.SHARED,
    owner_id=None,
    content_type=ContentType.TABS,
    content_id="t1",
)


class TestRewriteReferences(unittest.TestCase):
    def test_no_references_returns_input_unchanged(self):
        html = "<p>Plain <b>text</b> &amp; more</p>"
        self.assertEqual(find_local_references(html), [])
        self.assertIs(rewrite_references(html, {}), html)

    def test_external_images_are_not_references(self):
        html = '<img src="https://example.com/a.png">'
        self.assertEqual(find_local_references(html), [])

    def test_rewrite(self):
        html = '<p><img src=".path/a.png"/></p>'
        out = rewrite_references(html, {".path/a.png": "https://s3.test/a"})
        self.assertIn('src="https://s3.test/a"', out)
        self.assertNotIn(".path/", out)

    def test_missing_url_raises(self):
        with self.assertRaises(KeyError):
            rewrite_references('<img src=".path/a.png">', {})


class TestReferenceResolver(unittest.TestCase):
    def setUp(self):
        self.gateway, self.client = make_gateway()
        self.db = make_session_factory()()
        self.ledger = HashLedger(self.db, "case-1")
        self.verifier = IntegrityVerifier(self.gateway)
        self.resolver = ReferenceResolver(self.verifier, self.gateway)

    def tearDown(self):
        self.db.close()

    def _store_image(self, name, data=b"\x89PNG fake"):
        return self.verifier.write(CONTEXT.asset_key(name), data, self.ledger, overwrite=False)

    def test_resolves_every_reference_to_signed_url(self):
        a = self._store_image("a.png")
        self._store_image("b.png", b"other")
        html = (
            '<p>one <img src=".path/a.png"></p>'
            '<p>two <img src=".path/b.png"> again <img src=".path/a.png"></p>'
        )
        resolved = self.resolver.resolve(html, CONTEXT, self.ledger)
        self.assertEqual(resolved.substitutions, 3)
        self.assertEqual([asset.name for asset in resolved.assets], ["a.png", "b.png"])
        self.assertNotIn(".path/", resolved.content)
        self.assertIn(f"versionId={a.version_id}", resolved.content)
        # stored form untouched
        self.assertIn(".path/a.png", html)

    def test_zero_references(self):
        resolved = self.resolver.resolve("<p>none</p>", CONTEXT, self.ledger)
        self.assertEqual(resolved.content, "<p>none</p>")
        self.assertEqual(resolved.assets, [])

    def test_missing_asset_fails_whole_document(self):
        self._store_image("a.png")
        html = '<img src=".path/a.png"><img src=".path/missing.png">'
        with self.assertRaises(ObjectNotFound):
            self.resolver.resolve(html, CONTEXT, self.ledger)

    def test_tampered_asset_fails(self):
        self._store_image("a.png")
        self.client.tamper(CONTEXT.asset_key("a.png"), b"swapped")
        with self.assertRaises(IntegrityError):
            self.resolver.resolve('<img src=".path/a.png">', CONTEXT, self.ledger)

    def test_encoded_names_resolve(self):
        self._store_image("my image.png")
        resolved = self.resolver.resolve(
            '<img src=".path/my%20image.png">', CONTEXT, self.ledger
        )
        self.assertEqual(resolved.assets[0].name, "my image.png")

    def test_load_verifies_document_then_resolves(self):
        self._store_image("a.png")
        stored = self.verifier.write(
            CONTEXT.object_key, b'<img src=".path/a.png">', self.ledger
        )
        resolved = self.resolver.load(CONTEXT, self.ledger)
        self.assertIsInstance(resolved, LoadedDocument)
        self.assertEqual(resolved.record, stored.record)
        self.assertEqual(len(resolved.assets), 1)
        self.assertIsNone(resolved.assets[0].body)

    def test_load_can_keep_verified_asset_bytes(self):
        self._store_image("a.png", b"image-bytes")
        self.verifier.write(CONTEXT.object_key, b'<img src=".path/a.png">', self.ledger)
        resolved = self.resolver.load(CONTEXT, self.ledger, keep_bodies=True)
        self.assertEqual(resolved.assets[0].body.read_bytes(), b"image-bytes")
        resolved.close()
        self.assertTrue(resolved.assets[0].body.body.closed)

    def test_custom_marker(self):
        resolver = ReferenceResolver(self.verifier, self.gateway, marker="local://")
        self._store_image("a.png")
        resolved = resolver.resolve('<img src="local://a.png">', CONTEXT, self.ledger)
        self.assertEqual(resolved.substitutions, 1)


if __name__ == "__main__":
    unittest.main()
