from ..models import Task

OPEN_TASK_STATUSES = ("To Do", "In Progress")


class Store:
    """Read access for automation rules over a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def find(self, model, *criteria):
        return self.session.query(model).filter(*criteria).order_by(model.id.asc()).all()

    def get(self, model, record_id):
        return self.session.get(model, record_id)

    def has_open_task(self, ref, task_type=None) -> bool:
        q = self.session.query(Task.id).filter(
            Task.related_module == ref.module.value,
            Task.related_record_id == ref.record_id,
            Task.status.in_(OPEN_TASK_STATUSES),
        )
        if task_type is not None:
            q = q.filter(Task.task_type == task_type)
        return q.first() is not None
