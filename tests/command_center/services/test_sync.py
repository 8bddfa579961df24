"""Tests for command_center.services.sync: capture, upline walk, batch backfill."""
from unittest.mock import MagicMock

import pytest

from command_center.errors import ConfigurationError, PersistenceError
from command_center.services.sync import UplineSync, build_sync_copy, table_for

AGENCY = 'pitchMarketingAgency'
MASTER = 'pitchModularSpaces'


class TestBuildSyncCopy:

    def test_drops_id_and_stamps_lineage(self):
        copy = build_sync_copy({'id': 'c-1', 'email': 'a@b.co', 'source': 'creditprenuers'},
                               'creditprenuers', 'creditprenuers')
        assert 'id' not in copy
        assert copy['synced_from'] == 'creditprenuers'
        assert copy['original_id'] == 'c-1'
        assert copy['synced_at']
        assert copy['email'] == 'a@b.co'

    def test_source_falls_back_to_origin(self):
        copy = build_sync_copy({'id': 7}, AGENCY, 'coyslogistics')
        assert copy['source'] == 'coyslogistics'

    def test_does_not_mutate_input(self):
        row = {'id': 'x', 'name': 'n'}
        build_sync_copy(row, 'creditprenuers', 'creditprenuers')
        assert row == {'id': 'x', 'name': 'n'}


class TestTableFor:

    def test_known_kinds(self):
        assert table_for('lead') == 'crm_leads'
        assert table_for('booking') == 'bookings'

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match='Unknown record kind'):
            table_for('invoice')


class TestCapture:

    def test_stores_locally_and_dispatches(self, sync_service, stores, sample_lead):
        dispatch = MagicMock()
        stored = sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=dispatch)

        assert stored['id'].startswith('creditprenuers-')
        assert stored['status'] == 'new'
        assert stored['source'] == 'creditprenuers'
        assert stored['created_at']
        assert stores.rows('creditprenuers') == [stored]
        dispatch.assert_called_once_with('lead', stored, 'creditprenuers')

    def test_capture_does_not_write_upline(self, sync_service, stores, sample_lead):
        sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        assert stores.writes_to(AGENCY) == []
        assert stores.writes_to(MASTER) == []

    def test_local_write_uses_anon_tier(self, sync_service, stores, sample_lead):
        sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        assert stores.calls == [('creditprenuers', 'insert', 'crm_leads', False)]

    def test_keeps_explicit_status(self, sync_service, sample_lead):
        sample_lead['status'] = 'contacted'
        stored = sync_service.capture_and_sync('lead', sample_lead, 'coyslogistics', dispatch=MagicMock())
        assert stored['status'] == 'contacted'

    def test_strips_caller_supplied_id_and_lineage(self, sync_service, sample_lead):
        sample_lead.update({'id': 'spoofed', 'synced_from': 'x', 'original_id': 'y', 'source': 'elsewhere'})
        stored = sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        assert stored['id'] != 'spoofed'
        assert 'synced_from' not in stored
        assert 'original_id' not in stored
        assert stored['source'] == 'creditprenuers'

    def test_booking_goes_to_bookings_table(self, sync_service, stores):
        booking = {'name': 'Sam', 'email': 's@example.com', 'booking_date': '2025-03-01', 'booking_time': '10:00'}
        sync_service.capture_and_sync('booking', booking, 'coyslogistics', dispatch=MagicMock())
        assert len(stores.rows('coyslogistics', 'bookings')) == 1
        assert stores.rows('coyslogistics', 'crm_leads') == []

    def test_unregistered_origin(self, sync_service, stores, sample_lead):
        dispatch = MagicMock()
        with pytest.raises(ConfigurationError, match='not registered'):
            sync_service.capture_and_sync('lead', sample_lead, 'unknownBiz', dispatch=dispatch)
        dispatch.assert_not_called()
        assert stores.calls == []

    def test_unconfigured_origin(self, sync_service, stores, sample_lead):
        stores.unconfigured.add('creditprenuers')
        with pytest.raises(ConfigurationError, match='not configured'):
            sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())

    def test_local_insert_failure(self, sync_service, stores, sample_lead):
        stores.failing.add('creditprenuers')
        dispatch = MagicMock()
        with pytest.raises(PersistenceError, match='Local insert failed') as exc:
            sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=dispatch)
        assert exc.value.db == 'creditprenuers'
        dispatch.assert_not_called()

    def test_upline_outage_does_not_fail_capture(self, sync_service, stores, sample_lead):
        stores.failing.update({AGENCY, MASTER})

        def dispatch_inline(kind, record, origin):
            sync_service.sync_upline(kind, record, origin)

        stored = sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=dispatch_inline)
        assert stored['id']


class TestSyncUpline:

    def _capture(self, sync_service, lead, origin='creditprenuers'):
        return sync_service.capture_and_sync('lead', lead, origin, dispatch=MagicMock())

    def test_full_chain(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        results = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert [s['db'] for s in results['success']] == [AGENCY, MASTER]
        assert results['failed'] == []
        assert len(stores.rows(AGENCY)) == 1
        assert len(stores.rows(MASTER)) == 1

    def test_lineage_points_at_immediate_predecessor(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        sync_service.sync_upline('lead', stored, 'creditprenuers')

        agency_row = stores.rows(AGENCY)[0]
        master_row = stores.rows(MASTER)[0]
        assert agency_row['synced_from'] == 'creditprenuers'
        assert agency_row['original_id'] == stored['id']
        assert master_row['synced_from'] == AGENCY
        assert master_row['original_id'] == agency_row['id']

    def test_source_preserved_to_master(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead, origin='coyslogistics')
        sync_service.sync_upline('lead', stored, 'coyslogistics')
        assert stores.rows(AGENCY)[0]['source'] == 'coyslogistics'
        assert stores.rows(MASTER)[0]['source'] == 'coyslogistics'
        assert stores.rows(MASTER)[0]['email'] == sample_lead['email']

    def test_upline_writes_use_service_tier(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        sync_service.sync_upline('lead', stored, 'creditprenuers')
        upserts = [c for c in stores.calls if c[1] == 'upsert']
        assert upserts == [(AGENCY, 'upsert', 'crm_leads', True), (MASTER, 'upsert', 'crm_leads', True)]

    def test_idempotent_resync(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        sync_service.sync_upline('lead', stored, 'creditprenuers')
        second = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert second['failed'] == []
        assert len(stores.rows(AGENCY)) == 1
        assert len(stores.rows(MASTER)) == 1

    def test_aggregator_origin_has_one_hop(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead, origin=AGENCY)
        results = sync_service.sync_upline('lead', stored, AGENCY)
        assert [s['db'] for s in results['success']] == [MASTER]
        assert stores.rows(MASTER)[0]['synced_from'] == AGENCY

    def test_master_origin_is_a_no_op(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead, origin=MASTER)
        results = sync_service.sync_upline('lead', stored, MASTER)
        assert results == {'success': [], 'failed': []}
        assert len(stores.rows(MASTER)) == 1

    def test_stops_at_unconfigured_hop(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        stores.unconfigured.add(AGENCY)
        results = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert results['success'] == []
        assert results['failed'] == [{'db': AGENCY, 'error': 'not configured'}]
        assert stores.rows(MASTER) == []

    def test_stops_at_failing_hop(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        stores.failing.add(AGENCY)
        results = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert len(results['failed']) == 1
        assert results['failed'][0]['db'] == AGENCY
        assert '503' in results['failed'][0]['error']
        assert stores.writes_to(MASTER) == []
        # local row untouched
        assert stores.rows('creditprenuers') == [stored]

    def test_master_failure_keeps_agency_copy(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        stores.failing.add(MASTER)
        results = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert [s['db'] for s in results['success']] == [AGENCY]
        assert [f['db'] for f in results['failed']] == [MASTER]
        assert len(stores.rows(AGENCY)) == 1

    def test_resync_after_outage_completes_without_duplicates(self, sync_service, stores, sample_lead):
        stored = self._capture(sync_service, sample_lead)
        stores.failing.add(MASTER)
        sync_service.sync_upline('lead', stored, 'creditprenuers')
        stores.failing.clear()
        results = sync_service.sync_upline('lead', stored, 'creditprenuers')

        assert results['failed'] == []
        assert len(stores.rows(AGENCY)) == 1
        assert len(stores.rows(MASTER)) == 1

    def test_unknown_kind_is_reported(self, sync_service, stores):
        results = sync_service.sync_upline('invoice', {'id': 1}, 'creditprenuers')
        assert results['success'] == []
        assert 'Unknown record kind' in results['failed'][0]['error']
        assert stores.calls == []

    def test_empty_upsert_response_counts_as_failure(self, registry, sample_lead):
        client = MagicMock()
        client.upsert.return_value = []
        service = UplineSync(registry, client_factory=lambda reg, key, elevated=False: client)
        results = service.sync_upline('lead', {'id': 'c-1', **sample_lead}, 'creditprenuers')
        assert results['failed'][0]['db'] == AGENCY
        assert client.upsert.call_count == 1


class TestStampLocal:

    def test_stamps_origin_row_when_master_reached(self, registry, stores, sample_lead):
        service = UplineSync(registry, client_factory=stores.client_factory, stamp_local=True)
        stored = service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        service.sync_upline('lead', stored, 'creditprenuers')
        assert stores.rows('creditprenuers')[0]['synced_to_master'] is True

    def test_no_stamp_on_partial_walk(self, registry, stores, sample_lead):
        service = UplineSync(registry, client_factory=stores.client_factory, stamp_local=True)
        stored = service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        stores.failing.add(MASTER)
        service.sync_upline('lead', stored, 'creditprenuers')
        assert 'synced_to_master' not in stores.rows('creditprenuers')[0]

    def test_disabled_by_default(self, sync_service, stores, sample_lead):
        stored = sync_service.capture_and_sync('lead', sample_lead, 'creditprenuers', dispatch=MagicMock())
        sync_service.sync_upline('lead', stored, 'creditprenuers')
        assert [c for c in stores.calls if c[1] == 'update'] == []


class TestBatchSync:

    def _seed(self, sync_service, n, origin='creditprenuers'):
        return [
            sync_service.capture_and_sync('lead', {'name': f'Lead {i}', 'email': f'l{i}@example.com'},
                                          origin, dispatch=MagicMock())
            for i in range(n)
        ]

    def test_syncs_all_records(self, sync_service, stores):
        self._seed(sync_service, 3)
        summary = sync_service.batch_sync_upline('lead', 'creditprenuers')
        assert summary == {'total': 3, 'synced': 3, 'failed': 0, 'errors': []}
        assert len(stores.rows(MASTER)) == 3

    def test_counts_failures_per_record(self, sync_service, stores):
        seeded = self._seed(sync_service, 2)
        stores.failing.add(AGENCY)
        summary = sync_service.batch_sync_upline('lead', 'creditprenuers')

        assert summary['total'] == 2
        assert summary['synced'] == 0
        assert summary['failed'] == 2
        assert [e['record_id'] for e in summary['errors']] == [r['id'] for r in seeded]
        assert summary['errors'][0]['failed'][0]['db'] == AGENCY

    def test_since_filters_records(self, sync_service, stores):
        for i, day in enumerate(('2025-01-01', '2025-02-01', '2025-03-01')):
            stores.tables['creditprenuers']['crm_leads'].append(
                {'id': f'c-{i}', 'name': day, 'source': 'creditprenuers', 'created_at': f'{day}T00:00:00Z'})
        summary = sync_service.batch_sync_upline('lead', 'creditprenuers', since='2025-02-01T00:00:00Z')
        assert summary['total'] == 2
        assert sorted(r['name'] for r in stores.rows(MASTER)) == ['2025-02-01', '2025-03-01']

    def test_limit(self, sync_service):
        self._seed(sync_service, 5)
        summary = sync_service.batch_sync_upline('lead', 'creditprenuers', limit=2)
        assert summary['total'] == 2

    def test_empty_tenant(self, sync_service):
        summary = sync_service.batch_sync_upline('lead', 'coyslogistics')
        assert summary == {'total': 0, 'synced': 0, 'failed': 0, 'errors': []}

    def test_fetch_failure_raises(self, sync_service, stores):
        stores.failing.add('creditprenuers')
        with pytest.raises(PersistenceError, match='Failed to fetch crm_leads'):
            sync_service.batch_sync_upline('lead', 'creditprenuers')

    def test_unknown_origin(self, sync_service):
        with pytest.raises(ConfigurationError):
            sync_service.batch_sync_upline('lead', 'ghost')
