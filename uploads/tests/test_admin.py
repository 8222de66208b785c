"""
Tests for uploads/admin.py
"""
from unittest.mock import patch

from django.contrib.admin.sites import AdminSite
from django.test import RequestFactory, TestCase

from uploads.admin import UploadJobAdmin
from uploads.models import UploadJob
from uploads.tests.base import UploadTestMixin


class UploadJobAdminTest(UploadTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.model_admin = UploadJobAdmin(UploadJob, AdminSite())
        self.request = RequestFactory().get("/admin/uploads/uploadjob/")
        self.request.user = self.user.__class__.objects.create_superuser(
            username="admin", email="admin@example.com", password="secret-pass"
        )

    def test_active_jobs_cannot_be_deleted(self):
        pending = self.enqueue()
        processing = self.set_status(self.enqueue(), UploadJob.Status.PROCESSING)

        self.assertFalse(self.model_admin.has_delete_permission(self.request, pending))
        self.assertFalse(self.model_admin.has_delete_permission(self.request, processing))

    def test_terminal_jobs_can_be_deleted(self):
        for status in (UploadJob.Status.COMPLETED, UploadJob.Status.FAILED):
            with self.subTest(status=status):
                job = self.set_status(self.enqueue(), status)
                self.assertTrue(self.model_admin.has_delete_permission(self.request, job))

        self.assertTrue(self.model_admin.has_delete_permission(self.request))

    def test_state_fields_are_not_editable(self):
        job = self.enqueue()

        form_fields = self.model_admin.get_form(self.request, job)().fields

        for name in ("status", "progress", "uploaded_size", "error", "metadata"):
            with self.subTest(field=name):
                self.assertIn(name, self.model_admin.get_readonly_fields(self.request, job))
                self.assertNotIn(name, form_fields)

    def test_jobs_are_not_added_by_hand(self):
        self.assertFalse(self.model_admin.has_add_permission(self.request))

    def test_delete_releases_staged_payload(self):
        job = self.set_status(self.enqueue(), UploadJob.Status.FAILED)
        storage, name = job.staged_file.storage, job.staged_file.name

        self.model_admin.delete_model(self.request, job)

        self.assertFalse(UploadJob.objects.filter(pk=job.pk).exists())
        self.assertFalse(storage.exists(name))

    def test_bulk_delete_skips_active_jobs(self):
        pending = self.enqueue()
        done = self.set_status(self.enqueue(), UploadJob.Status.COMPLETED)

        with patch.object(self.model_admin, "message_user") as message_user:
            self.model_admin.delete_queryset(self.request, UploadJob.objects.all())

        self.assertEqual(list(UploadJob.objects.values_list("pk", flat=True)), [pending.pk])
        self.assertFalse(UploadJob.objects.filter(pk=done.pk).exists())
        message_user.assert_called_once()
