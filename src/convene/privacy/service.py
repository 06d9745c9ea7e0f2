import logging

logger = logging.getLogger(__name__)


class PrivacyService:
    """Export and erasure of the personal data held about one user."""

    def __init__(
        self,
        memberships,
        custom_fields,
        user_field_data,
        associations,
        bookings,
        activity=None,
        schedules=None,
    ):
        self.memberships = memberships
        self.custom_fields = custom_fields
        self.user_field_data = user_field_data
        self.associations = associations
        self.bookings = bookings
        self.activity = activity
        self.schedules = schedules

    def export_user_data(self, user_id: int) -> dict:
        """
        Collect the user's audiences, the bookings that reach them and their
        custom field values, labelled by field.
        """
        audiences = [
            {"id": a["id"], "name": a["name"], "parent_id": a.get("parent_id")}
            for a in self.memberships.get_user_audiences(user_id)
        ]
        bookings = [
            {
                "id": b["id"],
                "environment_id": b["environment_id"],
                "booking_date": b["booking_date"],
                "start_time": b["start_time"],
                "end_time": b["end_time"],
                "description": b["description"],
                "status": b["status"],
            }
            for b in self.bookings.get_by_participant(user_id, status=None)
        ]

        values = self.user_field_data.get_user_data(user_id)
        labels = {f"field_{f['id']}": f["field_label"] for f in self.custom_fields.get_all_for_user(user_id)}
        fields = [
            {"key": key, "label": labels.get(key, key), "value": value}
            for key, value in values.items()
        ]

        return {"user_id": user_id, "audiences": audiences, "bookings": bookings, "custom_fields": fields}

    def erase_user_data(self, user_id: int) -> dict:
        """Remove memberships, booking links, custom field values and schedule permissions of user_id."""
        result = {
            "memberships_removed": self.memberships.delete_user_memberships(user_id),
            "booking_links_removed": self.associations.delete_user_links(user_id),
            "field_data_removed": self.user_field_data.delete_user_data(user_id),
        }
        if self.schedules is not None:
            result["schedule_permissions_removed"] = self.schedules.delete_user_permissions(user_id)
        logger.info("Erased personal data of user %s: %s", user_id, result)
        if self.activity is not None:
            self.activity.log(
                "privacy_erasure", user_id=user_id, object_type="user", object_id=user_id, context=result
            )
            self.activity.flush()
        return result
