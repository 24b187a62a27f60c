import datetime
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import InputError
from recurrence import (
    generate_recurring_dates,
    schedule_dates,
    single_session_date,
    weekday_index,
)


class RecurrenceTestCase(unittest.TestCase):
    def test_weekday_index_starts_on_sunday(self) -> None:
        self.assertEqual(weekday_index(datetime.date(2024, 1, 7)), 0)
        self.assertEqual(weekday_index(datetime.date(2024, 1, 1)), 1)
        self.assertEqual(weekday_index(datetime.date(2024, 1, 6)), 6)

    def test_monday_and_wednesday_over_two_weeks(self) -> None:
        dates = generate_recurring_dates(
            datetime.date(2024, 1, 1), datetime.date(2024, 1, 14), [1, 3]
        )
        self.assertEqual(
            [d.date() for d in dates],
            [
                datetime.date(2024, 1, 1),
                datetime.date(2024, 1, 3),
                datetime.date(2024, 1, 8),
                datetime.date(2024, 1, 10),
            ],
        )
        self.assertTrue(all(d.time() == datetime.time(12, 0) for d in dates))

    def test_bounds_are_inclusive(self) -> None:
        dates = generate_recurring_dates("2024-01-07", "2024-01-14", [0])
        self.assertEqual(
            [d.date() for d in dates],
            [datetime.date(2024, 1, 7), datetime.date(2024, 1, 14)],
        )

    def test_single_day_range_on_other_weekday(self) -> None:
        day = datetime.date(2024, 1, 1)
        self.assertEqual(generate_recurring_dates(day, day, [2]), [])
        self.assertEqual(len(generate_recurring_dates(day, day, [1])), 1)

    def test_strictly_increasing_without_duplicates(self) -> None:
        dates = generate_recurring_dates(
            datetime.date(2024, 1, 1), datetime.date(2024, 3, 1), [5, 1, 1, 3]
        )
        self.assertEqual(dates, sorted(set(dates)))

    def test_empty_weekdays_or_reversed_range(self) -> None:
        self.assertEqual(
            generate_recurring_dates(
                datetime.date(2024, 1, 1), datetime.date(2024, 1, 31), []
            ),
            [],
        )
        self.assertEqual(
            generate_recurring_dates(
                datetime.date(2024, 2, 1), datetime.date(2024, 1, 1), [1, 2]
            ),
            [],
        )

    def test_weekday_out_of_range(self) -> None:
        with self.assertRaises(InputError) as ctx:
            generate_recurring_dates(
                datetime.date(2024, 1, 1), datetime.date(2024, 1, 31), [7]
            )
        self.assertEqual(ctx.exception.code, "INVALID_WEEKDAY")

    def test_datetime_inputs_are_normalized_to_noon(self) -> None:
        dates = generate_recurring_dates(
            datetime.datetime(2024, 1, 1, 23, 30),
            datetime.datetime(2024, 1, 1, 0, 5),
            [1],
        )
        self.assertEqual(dates, [datetime.datetime(2024, 1, 1, 12, 0)])

    def test_single_session_ignores_weekdays(self) -> None:
        self.assertEqual(
            single_session_date(datetime.date(2024, 1, 2)),
            [datetime.datetime(2024, 1, 2, 12, 0)],
        )
        self.assertEqual(
            schedule_dates("2024-01-02", weekdays=[0], recurring=False),
            [datetime.datetime(2024, 1, 2, 12, 0)],
        )

    def test_recurring_schedule_requires_end_date(self) -> None:
        with self.assertRaises(InputError) as ctx:
            schedule_dates("2024-01-01", None, [1], recurring=True)
        self.assertEqual(ctx.exception.code, "END_DATE_REQUIRED")

    def test_invalid_date_string(self) -> None:
        with self.assertRaises(InputError) as ctx:
            single_session_date("not-a-date")
        self.assertEqual(ctx.exception.code, "INVALID_DATE")


if __name__ == "__main__":
    unittest.main()
