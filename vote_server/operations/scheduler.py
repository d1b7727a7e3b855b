# vote_server/operations/scheduler.py

# Periodic background task: closes elections whose end date has passed and
# auto-publishes results for closed elections once their publish delay is over.

import logging
import threading

from vote_server import db
from vote_server.database.models import Election, utcnow
from vote_server.elections.lifecycle import ElectionStatus

logger = logging.getLogger(__name__)

AUTO_PUBLISH_ACTOR = 'auto-publish'


class Scheduler:
    def __init__(self, app, elections, results, audit_logger, interval_seconds=60, initial_delay_seconds=5):
        self.app = app
        self.elections = elections
        self.results = results
        self.audit = audit_logger
        self.interval = interval_seconds
        self.initial_delay = initial_delay_seconds
        self._stop = threading.Event()
        self.worker = None

    def start(self):
        if self.worker is not None and self.worker.is_alive():
            return
        self._stop.clear()
        self.worker = threading.Thread(target=self._run, name='vote-server-scheduler')
        self.worker.daemon = True
        self.worker.start()
        logger.info("Scheduler started, checking every %ss", self.interval)

    def stop(self, timeout=None):
        self._stop.set()
        if self.worker is not None:
            self.worker.join(timeout)

    def _run(self):
        if self._stop.wait(self.initial_delay):
            return
        while True:
            try:
                with self.app.app_context():
                    self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            if self._stop.wait(self.interval):
                return

    def tick(self, now=None):
        """One pass over all elections. Per-election failures are audited and skipped."""
        now = now or utcnow()
        summary = {'closed': [], 'published': [], 'failed': []}

        active = (db.session.query(Election)
                  .filter(Election.status == ElectionStatus.ACTIVE.value, Election.end_date < now)
                  .all())
        for election in active:
            election_id = election.id
            try:
                if self.elections.close_if_expired(election, now=now, actor=AUTO_PUBLISH_ACTOR):
                    summary['closed'].append(election_id)
            except Exception as e:
                self._failed(election_id, 'Failed to close expired election', e, summary)

        closed = (db.session.query(Election)
                  .filter(Election.status == ElectionStatus.CLOSED.value,
                          Election.auto_publish_results.is_(True))
                  .all())
        for election in closed:
            election_id = election.id
            try:
                if not self.elections.publish_due(election, now=now):
                    continue
                self.results.publish(election_id, published_by=AUTO_PUBLISH_ACTOR)
                summary['published'].append(election_id)
                logger.info("Auto-published results for election: %s", election.name)
            except Exception as e:
                self._failed(election_id, 'Failed to auto-publish election results', e, summary)

        return summary

    def _failed(self, election_id, message, error, summary):
        db.session.rollback()
        logger.exception("%s %s", message, election_id)
        self.audit.log_admin_action(AUTO_PUBLISH_ACTOR, message, electionId=election_id,
                                    error=str(error), level='error')
        summary['failed'].append(election_id)
