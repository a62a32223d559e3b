from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy.pool import StaticPool

from app.db import build_engine, build_session_factory
from app.models import Base, Client, Project, ProjectStatus, QuoteStatus
from app.services.cost_estimate_service import (
    CostEstimateInput,
    cost_estimate_summary,
    create_cost_estimate,
    delete_cost_estimate,
    list_cost_estimates,
    update_cost_estimate,
)
from app.services.quotation_service import (
    QuotationItemInput,
    create_quotation_item,
    delete_quotation_item,
    delete_section,
    list_quotation_items,
    price_line,
    price_suggestions,
    quotation_summary,
    rename_section,
    update_quotation_item,
)


class ProjectFixtureMixin:
    def setUp(self) -> None:
        self.engine = build_engine('sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
        Base.metadata.create_all(self.engine)
        self.db = build_session_factory(self.engine)()
        self.client = Client(name='Alice')
        self.db.add(self.client)
        self.db.flush()
        self.project = self._project('Kitchen')
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _project(self, name: str, **fields) -> Project:
        project = Project(client_id=self.client.id, name=name, status=ProjectStatus.TO_QUOTE, **fields)
        self.db.add(project)
        self.db.flush()
        return project


class QuotationServiceTests(ProjectFixtureMixin, unittest.TestCase):
    def _line(self, description: str = 'Painting walls', **overrides) -> QuotationItemInput:
        values = {
            'description': description,
            'quantity': Decimal('2'),
            'unit': 'm2',
            'unit_price': Decimal('50'),
            'margin': Decimal('20'),
            'section': 'Walls',
        }
        values.update(overrides)
        return QuotationItemInput(**values)

    def test_price_line_applies_margin(self) -> None:
        self.assertEqual(price_line(Decimal('50'), Decimal('2'), Decimal('20')), (Decimal('60.00'), Decimal('120.00')))
        self.assertEqual(price_line(Decimal('19.99'), Decimal('3'), None), (None, Decimal('59.97')))

    def test_create_update_and_summarise_sections(self) -> None:
        walls = create_quotation_item(self.db, project_id=self.project.id, data=self._line())
        create_quotation_item(
            self.db,
            project_id=self.project.id,
            data=self._line('Tiling', unit_price=Decimal('80'), margin=None, section='Floor'),
        )
        self.db.commit()

        self.assertEqual(walls.price_with_margin, Decimal('60.00'))
        self.assertEqual(walls.total, Decimal('120.00'))
        summary = quotation_summary(self.db, project_id=self.project.id)
        self.assertEqual(list(summary['sections']), ['Floor', 'Walls'])
        self.assertEqual(summary['sections']['Floor']['total'], Decimal('160.00'))
        self.assertEqual(summary['total'], Decimal('280.00'))

        update_quotation_item(self.db, item_id=walls.id, data=self._line(quantity=Decimal('3')))
        self.assertEqual(walls.total, Decimal('180.00'))

    def test_rejects_bad_lines_and_unknown_project(self) -> None:
        with self.assertRaises(ValueError):
            create_quotation_item(self.db, project_id=self.project.id, data=self._line(' '))
        with self.assertRaises(ValueError):
            create_quotation_item(self.db, project_id=self.project.id, data=self._line(quantity=Decimal('0')))
        with self.assertRaises(ValueError):
            create_quotation_item(self.db, project_id=self.project.id, data=self._line(unit_price=Decimal('-1')))
        with self.assertRaisesRegex(ValueError, 'Project not found'):
            create_quotation_item(self.db, project_id=999, data=self._line())

    def test_rename_and_delete_sections(self) -> None:
        first = create_quotation_item(self.db, project_id=self.project.id, data=self._line())
        create_quotation_item(self.db, project_id=self.project.id, data=self._line('Priming'))
        create_quotation_item(self.db, project_id=self.project.id, data=self._line('Tiling', section='Floor'))
        other = self._project('Bathroom')
        create_quotation_item(self.db, project_id=other.id, data=self._line())
        self.db.commit()

        self.assertEqual(rename_section(self.db, project_id=self.project.id, old_name='Walls', new_name=' Walls & ceiling '), 2)
        self.db.refresh(first)
        self.assertEqual(first.section, 'Walls & ceiling')
        with self.assertRaises(ValueError):
            rename_section(self.db, project_id=self.project.id, old_name='Floor', new_name=' ')

        self.assertEqual(delete_section(self.db, project_id=self.project.id, name='Floor'), 1)
        self.assertEqual(delete_quotation_item(self.db, item_id=first.id), self.project.id)
        self.db.commit()

        self.assertEqual([i.description for i in list_quotation_items(self.db, project_id=self.project.id)], ['Priming'])
        self.assertEqual([i.section for i in list_quotation_items(self.db, project_id=other.id)], ['Walls'])

    def test_price_suggestions_use_accepted_quotations_newest_first(self) -> None:
        older = self._project('Flat A', quote_status=QuoteStatus.ACCEPTED, accepted_date=date(2024, 1, 1))
        newer = self._project('Flat B', quote_status=QuoteStatus.ACCEPTED, accepted_date=date(2024, 5, 1))
        create_quotation_item(self.db, project_id=older.id, data=self._line(unit_price=Decimal('40'), margin=Decimal('10')))
        create_quotation_item(self.db, project_id=newer.id, data=self._line(unit_price=Decimal('50'), margin=Decimal('20')))
        create_quotation_item(self.db, project_id=self.project.id, data=self._line(unit_price=Decimal('999')))
        self.db.commit()

        self.assertEqual(price_suggestions(self.db, query='Pa'), [])
        suggestions = price_suggestions(self.db, query='Paint')

        self.assertEqual(len(suggestions), 1)
        suggestion = suggestions[0]
        self.assertEqual(suggestion['description'], 'Painting walls')
        self.assertEqual(suggestion['avg_price'], Decimal('45.00'))
        self.assertEqual(suggestion['avg_margin'], Decimal('15.00'))
        self.assertEqual(suggestion['last_price'], Decimal('50'))
        self.assertEqual(suggestion['last_margin'], Decimal('20'))
        self.assertEqual(suggestion['usage_count'], 2)


class CostEstimateServiceTests(ProjectFixtureMixin, unittest.TestCase):
    def test_summary_computes_net_and_gross_per_section(self) -> None:
        create_cost_estimate(
            self.db,
            project_id=self.project.id,
            data=CostEstimateInput(section='Walls', description='Paint', quantity=Decimal('2'), unit='l', unit_net_price=Decimal('10')),
        )
        create_cost_estimate(
            self.db,
            project_id=self.project.id,
            data=CostEstimateInput(
                section='Floor',
                description='Panels',
                quantity=Decimal('3'),
                unit='m2',
                unit_net_price=Decimal('33.33'),
                tax_rate=Decimal('8'),
            ),
        )
        self.db.commit()

        summary = cost_estimate_summary(self.db, project_id=self.project.id)

        self.assertEqual(summary['sections']['Walls']['net'], Decimal('20.00'))
        self.assertEqual(summary['sections']['Walls']['gross'], Decimal('24.60'))
        self.assertEqual(summary['sections']['Floor']['gross'], Decimal('107.99'))
        self.assertEqual(summary['net'], Decimal('119.99'))
        self.assertEqual(summary['gross'], Decimal('132.59'))

    def test_validation_update_and_delete(self) -> None:
        line = CostEstimateInput(section='Walls', description='Paint', quantity=Decimal('2'), unit='l', unit_net_price=Decimal('10'))
        with self.assertRaises(ValueError):
            create_cost_estimate(self.db, project_id=self.project.id, data=CostEstimateInput(**{**line.__dict__, 'section': ' '}))
        with self.assertRaises(ValueError):
            create_cost_estimate(self.db, project_id=self.project.id, data=CostEstimateInput(**{**line.__dict__, 'tax_rate': Decimal('150')}))

        item = create_cost_estimate(self.db, project_id=self.project.id, data=line)
        update_cost_estimate(self.db, item_id=item.id, data=CostEstimateInput(**{**line.__dict__, 'quantity': Decimal('5')}))
        self.assertEqual(item.quantity, Decimal('5'))

        delete_cost_estimate(self.db, item_id=item.id)
        self.db.commit()
        self.assertEqual(list_cost_estimates(self.db, project_id=self.project.id), [])
        with self.assertRaises(ValueError):
            delete_cost_estimate(self.db, item_id=item.id)


if __name__ == '__main__':
    unittest.main()
