"""
Salesforce Contact fields editable from meeting suggestions.

Company is not listed: on a Contact it lives on the related Account
(Account.Name) and cannot be written through the Contact endpoint. The API
client still reads it for display.
"""

from crm_sync.services.crm.field_config import FieldConfig, FieldDescriptor, PromptExample


class SalesforceFieldConfig(FieldConfig):
    provider = "salesforce"
    display_name = "Salesforce"
    prompt_example = PromptExample(
        field="title",
        value="VP of Sales",
        context="Sarah mentioned she was promoted to VP of Sales",
    )

    def fields(self) -> list[FieldDescriptor]:
        return [
            FieldDescriptor("firstname", "First Name", api_name="FirstName", category="basic"),
            FieldDescriptor("lastname", "Last Name", api_name="LastName", category="basic"),
            FieldDescriptor("email", "Email", api_name="Email", category="basic"),
            FieldDescriptor("phone", "Phone", api_name="Phone", category="phone"),
            FieldDescriptor("mobilephone", "Mobile Phone", api_name="MobilePhone", category="phone"),
            FieldDescriptor("title", "Job Title", api_name="Title", category="work"),
            FieldDescriptor("department", "Department", api_name="Department", category="work"),
            FieldDescriptor("address", "Address", api_name="MailingStreet", category="address"),
            FieldDescriptor("city", "City", api_name="MailingCity", category="address"),
            FieldDescriptor("state", "State", api_name="MailingState", category="address"),
            FieldDescriptor("zip", "ZIP Code", api_name="MailingPostalCode", category="address"),
            FieldDescriptor("country", "Country", api_name="MailingCountry", category="address"),
        ]
