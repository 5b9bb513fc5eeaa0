import asyncio
import os
import sys
import tempfile
import time
import unittest

from google.api_core.exceptions import NotFound as GcsNotFound
from google.api_core.exceptions import ServiceUnavailable

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from artshop.db import images  # noqa: E402
from artshop.db.models import ImageUpload  # noqa: E402
from artshop.utils import config  # noqa: E402


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.cache_control = None
        self.public = False

    def upload_from_string(self, data, content_type=None):
        if self.bucket.fail_with:
            raise self.bucket.fail_with
        if self.bucket.delay:
            time.sleep(self.bucket.delay)
        self.bucket.objects[self.name] = (data, content_type)

    def make_public(self):
        self.public = True
        self.bucket.public.add(self.name)

    def delete(self):
        if self.name not in self.bucket.objects:
            raise GcsNotFound(f"No such object: {self.name}")
        del self.bucket.objects[self.name]


class FakeBucket:
    """Just enough of google.cloud.storage.Bucket for the image store."""

    def __init__(self, name="art-bucket"):
        self.name = name
        self.objects = {}
        self.public = set()
        self.fail_with = None
        self.delay = 0

    def blob(self, name):
        return FakeBlob(self, name)


class LocalImageStoreTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = images.LocalImageStore(
            os.path.join(self.temp_dir.name, "uploads"), timeout=5
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_put_and_delete(self):
        ref = await self.store.put(ImageUpload("Sunset.PNG", b"data", "image/png"))
        self.assertTrue(ref.startswith("/uploads/"))
        self.assertTrue(ref.endswith(".png"))

        path = self.store.path_for(ref)
        self.assertEqual(path.read_bytes(), b"data")

        await self.store.delete(ref)
        self.assertFalse(path.exists())
        # deleting twice is fine
        await self.store.delete(ref)

    async def test_unique_names(self):
        refs = {
            await self.store.put(ImageUpload("a.jpg", b"x")) for _ in range(5)
        }
        self.assertEqual(len(refs), 5)

    def test_path_for_refuses_foreign_references(self):
        for ref in (
            "/uploads/../secret.txt",
            "/uploads/sub/dir.png",
            "/uploads/",
            "https://example.com/a.png",
            "/etc/passwd",
        ):
            with self.subTest(ref=ref):
                self.assertIsNone(self.store.path_for(ref))

    async def test_delete_ignores_foreign_reference(self):
        await self.store.delete("https://example.com/a.png")


class GcsImageStoreTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.bucket = FakeBucket()
        self.store = images.GcsImageStore(self.bucket, "artworks/", timeout=1)

    async def test_put_returns_public_url(self):
        ref = await self.store.put(ImageUpload("sky.webp", b"img", "image/webp"))

        self.assertTrue(
            ref.startswith("https://storage.googleapis.com/art-bucket/artworks/")
        )
        blob_name = self.store.blob_name_for(ref)
        self.assertEqual(self.bucket.objects[blob_name], (b"img", "image/webp"))
        self.assertIn(blob_name, self.bucket.public)

        await self.store.delete(ref)
        self.assertEqual(self.bucket.objects, {})
        # already gone
        await self.store.delete(ref)

    async def test_delete_ignores_other_buckets(self):
        await self.store.delete("https://storage.googleapis.com/other/artworks/a.png")
        await self.store.delete("/uploads/a.png")

    async def test_api_errors_become_retryable_store_errors(self):
        self.bucket.fail_with = ServiceUnavailable("backend down")
        with self.assertRaises(images.ImageStoreError) as ctx:
            await self.store.put(ImageUpload("a.png", b"x"))
        self.assertTrue(ctx.exception.retryable)

    async def test_slow_upload_times_out(self):
        self.bucket.delay = 0.5
        self.store.timeout = 0.05
        with self.assertRaises(images.ImageStoreError) as ctx:
            await self.store.put(ImageUpload("a.png", b"x"))
        self.assertTrue(ctx.exception.retryable)
        # let the worker thread finish before the loop closes
        await asyncio.sleep(0.6)


class ReadImageFileTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.temp_dir.cleanup()

    def write(self, name, size):
        path = os.path.join(self.temp_dir.name, name)
        with open(path, "wb") as f:
            f.write(b"\0" * size)
        return path

    def test_reads_image(self):
        upload = images.read_image_file(self.write("pic.jpg", 10))
        self.assertEqual(upload.filename, "pic.jpg")
        self.assertEqual(upload.content_type, "image/jpeg")
        self.assertEqual(len(upload.data), 10)

    def test_rejects_missing_non_image_and_oversized(self):
        with self.assertRaises(images.ImageStoreError):
            images.read_image_file(os.path.join(self.temp_dir.name, "nope.png"))
        with self.assertRaises(images.ImageStoreError):
            images.read_image_file(self.write("notes.txt", 10))
        with self.assertRaises(images.ImageStoreError):
            images.read_image_file(self.write("big.png", 11), max_bytes=10)

        self.assertEqual(config.MAX_IMAGE_BYTES, 5 * 1024 * 1024)


class StoreSelectionTestCase(unittest.TestCase):
    def tearDown(self):
        images.set_image_store(None)
        config._settings = None

    def test_local_store_from_settings(self):
        config._settings = config.Settings(upload_dir="somewhere", upload_timeout=3)
        images.set_image_store(None)
        store = images.get_image_store()
        self.assertIsInstance(store, images.LocalImageStore)
        self.assertEqual(store.timeout, 3)
        self.assertIs(images.get_image_store(), store)

    def test_gcs_store_requires_bucket(self):
        config._settings = config.Settings(image_store="gcs", gcs_bucket=None)
        images.set_image_store(None)
        with self.assertRaises(images.ImageStoreError):
            images.get_image_store()


if __name__ == "__main__":
    unittest.main()
